from rest_framework import status
from rest_framework.exceptions import APIException, NotFound


class LoanNotFound(NotFound):
    default_detail = "Loan not found."
    default_code = "loan_not_found"


class PersistenceFailure(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Loan storage is unavailable."
    default_code = "persistence_failure"
