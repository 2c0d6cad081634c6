# Services package.
#
# Each module exposes async functions that encapsulate business logic and
# database access for one concern:
#
#   article_service: post CRUD + pagination + cache, addressed by slug
#   view_service: rate-limited, best-effort view counting
#   comment_service: threaded comments, cooldown, deletion cascade
#   user_service: user listing, profile, creation
#   settings_service: singleton site settings
#   rss_service: RSS source catalogue
#
# All service functions accept an AsyncSession as their first argument
# so that the router layer controls the transaction boundary via the
# ``get_db`` dependency (view_service is the one exception: it commits
# its own increment).
