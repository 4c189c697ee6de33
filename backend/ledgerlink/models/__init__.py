from .auth import User, CompanyProfile, SessionToken
from .access import CompanyMember, AccountantInvite, AccountantSessionToken
from .security import SecurityEvent
from .reviews import ReviewMark

__all__ = [
    'User', 'CompanyProfile', 'SessionToken',
    'CompanyMember', 'AccountantInvite', 'AccountantSessionToken',
    'SecurityEvent',
    'ReviewMark',
]
