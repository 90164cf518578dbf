from . import crud_assignment, crud_survey, crud_user  # noqa: F401
