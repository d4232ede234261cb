class Md2PdfError(Exception):
    """Base exception for the PDF generation system."""


class ConfigurationError(Md2PdfError):
    pass


class UnknownEngineError(Md2PdfError):
    def __init__(self, engine_name: str, available: list[str] | None = None):
        self.engine_name = engine_name
        self.available = list(available or [])
        super().__init__(
            f"Unknown PDF engine: {engine_name}. "
            f"Available engines: {', '.join(self.available)}"
        )


class EngineConstructionError(Md2PdfError):
    def __init__(self, engine_name: str, detail: str):
        self.engine_name = engine_name
        super().__init__(f"Failed to create {engine_name} engine: {detail}")


class EngineInitializationError(Md2PdfError):
    def __init__(self, engine_name: str, detail: str):
        self.engine_name = engine_name
        super().__init__(f"Failed to initialize {engine_name} engine: {detail}")


class EngineGenerationError(Md2PdfError):
    def __init__(self, engine_name: str, detail: str):
        self.engine_name = engine_name
        super().__init__(f"{engine_name} PDF generation failed: {detail}")


class NoHealthyEngineError(Md2PdfError):
    def __init__(self) -> None:
        super().__init__("No healthy PDF engines available")


class RetriesExhaustedError(Md2PdfError):
    def __init__(self, attempts: int, last_error: str | None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"PDF generation failed after {attempts} attempts. "
            f"Last error: {last_error}"
        )


class AlertNotFoundError(Md2PdfError):
    def __init__(self, alert_id: str):
        self.alert_id = alert_id
        super().__init__(f"Alert not found: {alert_id}")
