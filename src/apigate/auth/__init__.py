"""
apigate.auth

Authentication/authorization package.

Responsibilities:
- JWT verification into a typed `Principal`.
- Flat role-based authorization against per-route policies.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Nothing here depends on the HTTP layer; the pipeline stages adapt these to requests.
