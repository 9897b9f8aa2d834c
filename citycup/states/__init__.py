from citycup.states.registration_states import RegistrationStates
from citycup.states.admin_states import AdminRoundStates, AdminCertificateStates

__all__ = ["RegistrationStates", "AdminRoundStates", "AdminCertificateStates"]
