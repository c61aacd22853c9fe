class RelayError(Exception):
    """Base class for failures scoped to a single request or connection."""

    status_code = 500
    message = "Internal error"

    def __init__(self, message: str = None):
        self.message = message or self.message
        super().__init__(self.message)


class RoomNotFound(RelayError):
    status_code = 404
    message = "Room not found"


class RoomFull(RelayError):
    status_code = 400
    message = "Room is full"


class NotRoomHost(RelayError):
    status_code = 403
    message = "Only the room host can do this"


class MalformedPayload(RelayError):
    status_code = 400
    message = "Malformed payload"


class DeliveryFailure(RelayError):
    """Write to one relay recipient failed. Logged, never sent back to the sender."""

    message = "Delivery failed"
