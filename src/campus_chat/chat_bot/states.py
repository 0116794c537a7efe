from aiogram.fsm.state import State, StatesGroup

class ChatState(StatesGroup):
    waiting_for_email = State()
    choosing_gender = State()
    choosing_alias = State()
    ready = State()
