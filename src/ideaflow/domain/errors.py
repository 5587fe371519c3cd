class IdeaFlowError(Exception):
    pass


class DeviceUnavailable(IdeaFlowError):
    pass


class ConnectTimeout(IdeaFlowError, ConnectionError):
    pass


class ConnectFailed(IdeaFlowError, ConnectionError):
    pass


class TransportError(IdeaFlowError):
    pass


class MalformedEvent(IdeaFlowError):
    pass
