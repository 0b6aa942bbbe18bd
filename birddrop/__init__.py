"""
BirdDrop signaling relay — pairs two anonymous devices and forwards their
connection handshake.
"""
