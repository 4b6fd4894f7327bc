"""
apigate.api.routers

Route modules mounted by `apigate.api.app.create_app`.
"""

# Package marker.
