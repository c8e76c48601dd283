# Repository size heuristics for rate-limit budgeting
import math

from schemas.scan import RepoSizeWarning, ScanRecommendation

# GitHub's default authenticated quota is 5000 requests/hour
LARGE_REPO_REQUEST_BUDGET = 4000


def estimate_requests(size_kb: int) -> int:
    """Rough API request estimate: tree listing plus file fetches"""
    return math.ceil(size_kb / 1000) + 10


def get_repo_size_warning(size_kb: int) -> RepoSizeWarning:
    """Classify a repository by size (in KB) and decide whether it can be scanned"""
    estimated = estimate_requests(size_kb)

    if size_kb > 500000:  # > 500MB
        return RepoSizeWarning(
            level='error',
            message='Extremely large repository',
            suggestion='This repository is too large to scan safely. Consider scanning smaller repositories first.',
            estimated_requests=estimated,
            can_scan=False,
            risk_level='very-high'
        )
    if size_kb > 200000:  # > 200MB
        return RepoSizeWarning(
            level='error',
            message='Very large repository',
            suggestion='High risk of hitting GitHub rate limits. Try a smaller repository or wait for the limit to reset.',
            estimated_requests=estimated,
            can_scan=False,
            risk_level='very-high'
        )
    if size_kb > 100000:  # > 100MB
        return RepoSizeWarning(
            level='warning',
            message='Large repository',
            suggestion='May hit rate limits during scanning. Consider a higher-tier GitHub token.',
            estimated_requests=estimated,
            can_scan=estimated < LARGE_REPO_REQUEST_BUDGET,
            risk_level='high'
        )
    if size_kb > 50000:  # > 50MB
        return RepoSizeWarning(
            level='warning',
            message='Medium-large repository',
            suggestion='Should scan fine, but may take longer. Monitor for rate limit warnings.',
            estimated_requests=estimated,
            can_scan=True,
            risk_level='medium'
        )
    if size_kb > 10000:  # > 10MB
        return RepoSizeWarning(
            level='info',
            message='Medium repository',
            suggestion='Good size for scanning. Low risk of rate limiting.',
            estimated_requests=estimated,
            can_scan=True,
            risk_level='low'
        )
    return RepoSizeWarning(
        level='success',
        message='Small repository',
        suggestion='Very low rate limit risk.',
        estimated_requests=estimated,
        can_scan=True,
        risk_level='low'
    )


def format_repo_size(size_kb: int) -> str:
    """Format a size in KB for display (e.g. "1.2 MB")"""
    if size_kb >= 1024 * 1024:
        return f"{size_kb / (1024 * 1024):.1f} GB"
    if size_kb >= 1024:
        return f"{size_kb / 1024:.1f} MB"
    return f"{size_kb} KB"


def get_scanning_recommendation(remaining: int, size_kb: int) -> ScanRecommendation:
    """Compare remaining API quota against the estimated cost of a scan"""
    estimated = get_repo_size_warning(size_kb).estimated_requests

    if remaining < estimated:
        return ScanRecommendation(
            can_scan=False,
            message=f"Insufficient API quota ({remaining} remaining, ~{estimated} needed)",
            suggestion='Wait for rate limit reset or try a smaller repository.'
        )
    if remaining < estimated * 2:
        return ScanRecommendation(
            can_scan=True,
            message=f"Low API quota ({remaining} remaining, ~{estimated} needed)",
            suggestion='Scan will likely succeed but may use most of your remaining quota.'
        )
    return ScanRecommendation(
        can_scan=True,
        message=f"Sufficient API quota ({remaining} remaining, ~{estimated} needed)",
        suggestion='Safe to scan with plenty of quota remaining.'
    )
