# Services package.
#
# Each module exposes one service class that orchestrates validation,
# store access and caching for a single domain aggregate:
#
#   comment_service : threaded comments: create, paginated trees, cascading delete
#   post_service    : CRUD + pagination + comment counts for Post
#
# Services receive their collaborators (repository, cache, logger) at
# construction; ``app.dependencies`` builds them per request on top of the
# request's AsyncSession so the router layer still owns the transaction
# boundary via ``get_db``.
