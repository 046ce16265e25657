"""
OAuth module: the authorization-code + PKCE authorize redirect and the consent page.
"""
