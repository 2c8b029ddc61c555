"""CIFlow push trigger service.

Mirrors ciflow pull request labels into git tags so that CI workflows
watching for tag pushes run against the pull request's head commit:
- GitHub webhook intake for pull_request and push events
- Label classification and tag naming
- Tag reconciliation against the repository's reference store
- Per-repository configuration loading and caching
"""
