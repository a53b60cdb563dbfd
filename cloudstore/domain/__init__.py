"""
Domain layer package housing the transfer engine: stream classification,
chunked uploads, listing aggregation and metadata normalization.
"""
