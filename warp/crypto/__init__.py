"""
Crypto Module - Session Token Authority
"""

from .tokens import generate_token, tokens_match, TOKEN_BYTES

__all__ = [
    'generate_token',
    'tokens_match',
    'TOKEN_BYTES',
]
