class MindRaceError(Exception):
    pass


class ConfigError(MindRaceError):
    pass


class RaceNotReadyError(MindRaceError):
    pass
