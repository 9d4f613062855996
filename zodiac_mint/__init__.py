from .app import create_app
from .config import Config, TestingConfig
from .errors import ErrorKind, PipelineError
from .pipeline import FortunePipeline
from .state import PipelineRun, PipelineState, ZodiacRequest

__all__ = [
    'Config',
    'ErrorKind',
    'FortunePipeline',
    'PipelineError',
    'PipelineRun',
    'PipelineState',
    'TestingConfig',
    'ZodiacRequest',
    'create_app',
]
