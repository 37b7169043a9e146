"""Docker Proxy Shim (DPS).

Takes the place of docker-proxy for published container ports. Rather than
forwarding traffic, it registers the frontend/backend mapping with an edge
proxy control plane on startup and deregisters it on shutdown:
 - port -> service identity lookup from Docker labels
 - one short-lived control plane connection per call
 - fixed retry schedule while the control plane comes up
"""
