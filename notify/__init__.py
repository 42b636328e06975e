"""notify/ -- Outbound SMS and email delivery for verification codes and reset links.

Layer rule: notify/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, auth/ or kvstore/.
"""
