# core/context.py

"""
Request-scoped authorization context.

Built once per request by the HTTP layer and passed explicitly into every
service call that records who did what. Services never look up the current
user or roles on their own.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class AuthContext:
    user_id: str = None
    roles: frozenset = field(default_factory=frozenset)
    ip_address: str = None

    @classmethod
    def from_request(cls, request):
        """Build the context from an authenticated Django request"""
        user = getattr(request, 'user', None)
        user_id = None
        roles = frozenset()

        if user is not None and user.is_authenticated:
            user_id = str(user.pk)
            roles = frozenset(name.upper() for name in user.groups.values_list('name', flat=True))

        return cls(user_id=user_id, roles=roles, ip_address=get_client_ip(request))

    @classmethod
    def system(cls):
        """Context for management commands and scheduled jobs"""
        return cls(user_id='system', roles=frozenset())

    def has_any_role(self, allowed_roles):
        allowed = {role.upper() for role in allowed_roles}
        return bool(self.roles & allowed)

    def is_user(self, user_id):
        return self.user_id is not None and str(user_id) == self.user_id


def get_client_ip(request):
    """Real client IP, honouring X-Forwarded-For from the reverse proxy"""
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR') or None
