from __future__ import annotations


class ArtifactError(Exception):
    """Generated output was rejected. Nothing from it is persisted."""

    code: str = "ARTIFACT_INVALID"

    @property
    def user_message(self) -> str:
        return str(self)


class ArtifactNoStructuredContentError(ArtifactError):
    code = "NO_STRUCTURED_CONTENT"

    def __init__(self, message: str, *, explained_in_prose: bool = False):
        super().__init__(message)
        self.explained_in_prose = explained_in_prose

    @property
    def user_message(self) -> str:
        if self.explained_in_prose:
            return "AI provided explanation instead of JSON. Please try rephrasing your requirements and try again."
        return "AI did not generate valid JSON structure. Please try again."


class ArtifactMalformedError(ArtifactError):
    code = "MALFORMED_ARTIFACT"

    @property
    def user_message(self) -> str:
        return "AI generated malformed JSON. Please try again."


class ArtifactSchemaInvalidError(ArtifactError):
    code = "SCHEMA_INVALID"

    def __init__(self, message: str, *, invalid_count: int = 0):
        super().__init__(message)
        self.invalid_count = invalid_count

    @property
    def user_message(self) -> str:
        return f"Workflow Error: {self}"
