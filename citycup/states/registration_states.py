from aiogram.fsm.state import State, StatesGroup


class RegistrationStates(StatesGroup):
    """FSM for participant self-registration."""
    choose_competition = State()   # Select competition from list
    choose_city        = State()   # Select city track
    enter_full_name    = State()   # Text input: full name
    enter_email        = State()   # Text input: email (identity key)
    enter_mi_id        = State()   # Text input: membership id or "-" to skip
