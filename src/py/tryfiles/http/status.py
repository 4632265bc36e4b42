from http import HTTPStatus

# Reason phrases by status code
HTTP_STATUS: dict[int, str] = {_.value: _.phrase for _ in HTTPStatus}

# Responses with these statuses never have a body
NO_BODY_STATUS: frozenset[int] = frozenset((204, 304))

# EOF
