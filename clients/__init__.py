"""
clients — typed, rate-limited API clients for the upstream data providers.

Every network call goes through the provider's shared RateLimiter and the
retry policy, in that order (one limiter slot per logical call or page).
"""
