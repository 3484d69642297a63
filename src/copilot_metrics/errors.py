class CopilotMetricsError(Exception):
    """
    base class for every error raised by the collection pipeline.
    """


class ConfigError(CopilotMetricsError):
    """
    a credential or configuration input is missing or unusable.
    Raised before any network call is made.
    """


class AuthError(CopilotMetricsError):
    """
    the signed assertion was rejected, had expired, or the exchange
    returned no installation token.
    """


class ApiError(CopilotMetricsError):
    """
    the API answered with an explicit error message, or the request
    itself failed.
    """

    def __init__(self, message: "str") -> "None":
        super().__init__(message)
        self.message = message


class EmptyResult(CopilotMetricsError):
    """
    the response carried no data for the requested report.
    """


class NotFoundLinks(EmptyResult):
    """
    a mandatory report answered without any download links.
    """


class NormalizationError(CopilotMetricsError):
    """
    a payload could not be decoded into any known wire shape.
    """


class OutputError(CopilotMetricsError):
    """
    a report or run metrics file could not be written.
    """
