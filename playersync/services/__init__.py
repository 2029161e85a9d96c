"""
Service layer: the stats service client and the player sync pipeline.
"""
