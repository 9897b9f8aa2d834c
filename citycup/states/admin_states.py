from aiogram.fsm.state import State, StatesGroup


class AdminRoundStates(StatesGroup):
    """Text/file inputs on the round card."""
    upload_csv    = State()   # Admin sends a CSV document with scores
    promote_count = State()   # Admin types N for "promote top N"
    pick_winners  = State()   # Toggle keyboard; picks kept in FSM data
    import_counts = State()   # Per-city counters; kept in FSM data
    new_round     = State()   # Admin types the name of a new round


class AdminCertificateStates(StatesGroup):
    """FSM for bulk revocation."""
    revoke_reason = State()   # Mandatory reason text
