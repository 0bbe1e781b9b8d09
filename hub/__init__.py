"""
SkyTrack feed hub: republishes normalized flight batches to websocket clients.
"""
