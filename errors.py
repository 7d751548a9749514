class ReadlyError(Exception):
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(ReadlyError):
    status_code = 404


class Conflict(ReadlyError):
    status_code = 409


class InvalidInput(ReadlyError):
    status_code = 422


class PremiumRequired(ReadlyError):
    status_code = 402
