"""
Non-database user built from the JWT payload.

There is no local user table: the clinician identity comes from the token
issued by the auth service and is only carried through the request.
"""


class ClinicianUser:
    """Request user for an authenticated clinician"""

    is_authenticated = True
    is_anonymous = False
    is_active = True

    def __init__(self, payload):
        self.id = payload['user_id']
        self.email = payload.get('email', '')
        self.tenant_id = payload.get('tenant_id')
        self.first_name = payload.get('first_name', '')
        self.last_name = payload.get('last_name', '')
        self.user_type = payload.get('user_type', 'staff')

    @property
    def pk(self):
        return self.id

    def get_full_name(self):
        full_name = f"{self.first_name} {self.last_name}".strip()
        return full_name or self.email

    def __str__(self):
        return self.email or str(self.id)
