from http import HTTPStatus

# Reason phrases by status code, as sent in the response status line
HTTP_STATUS: dict[int, str] = {_.value: _.phrase for _ in HTTPStatus}

# EOF
