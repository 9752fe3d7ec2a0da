"""
bookin.auth

Email sign-in code → JWT. Routes live in `bookin.auth.auth_routes`.
"""
