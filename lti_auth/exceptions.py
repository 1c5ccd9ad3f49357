"""
Exceptions raised while authenticating or signing LTI messages.

Helpers raise these; the public entry points (MessageAuthenticator,
SignatureSigner, AccessTokenIssuer) catch them and report ``ok``/``reason``
on the returned result instead.
"""


class LtiAuthError(Exception):
    """
    Base exception for LTI authentication errors. Subclasses provide a default
    message which can be overridden when raising.
    """
    message = None

    def __init__(self, message=None):
        if not message:
            message = self.message
        super().__init__(message)

    @property
    def reason(self):
        return str(self)


class MalformedRequest(LtiAuthError):
    message = "The LTI request is malformed."


class InvalidToken(LtiAuthError):
    message = "The JWT could not be parsed because it is malformed."


class ClaimValidationFailure(LtiAuthError):
    message = "The JWT has a missing or invalid claim."


class SignatureInvalid(LtiAuthError):
    message = "The message signature is invalid."


class ReplayDetected(LtiAuthError):
    message = "Invalid nonce."


class UnknownPrincipal(LtiAuthError):
    message = "The platform or tool could not be found."


class UnsupportedAlgorithm(LtiAuthError):
    message = "The signature algorithm is not supported."


class NoVerificationMaterial(LtiAuthError):
    message = (
        "Unable to verify JWT signature as neither a public key nor a JSON Web Key URL is specified."
    )


class ConstraintViolation(LtiAuthError):
    message = "The message does not satisfy the parameter constraints."


class UnsupportedMessageType(LtiAuthError):
    message = "Invalid or missing lti_message_type parameter."


class InvalidRsaKey(LtiAuthError):
    message = "The RSA key could not parsed."


class RsaKeyNotSet(LtiAuthError):
    message = "The RSA key is not set."


class BackendUnavailable(LtiAuthError):
    message = "A store or service needed to authenticate the message is unavailable."
