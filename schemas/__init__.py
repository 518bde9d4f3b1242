"""Wire models shared by the experiment client and the HTTP API."""
