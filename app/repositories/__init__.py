# Repositories package.
#
# Store adapters over the async SQLAlchemy session:
#
#   comments: recursive subtree / ancestor queries, paginated top-level
#              listing, cascading subtree delete
#   posts   : CRUD, listing and comment counts for Post
#
# Write methods commit before returning, so a service drops cache keys only
# after the write is durable.  Reads run in the session ``get_db`` opened.
# Every public method runs under a RetryPolicy (see ``app.retry``), so a
# transport failure is retried on a fresh transaction and surfaces as
# TransientInfraError once attempts run out.
