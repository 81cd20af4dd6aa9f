from .auth import require_roles

require_admin = require_roles("admin")
