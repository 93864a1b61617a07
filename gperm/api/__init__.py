"""OPRF evaluation API — stdlib http.server in front of a VOPRFServer."""
