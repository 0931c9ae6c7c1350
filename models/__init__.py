from .account import AccountModel, StateBindingModel  # noqa: F401
