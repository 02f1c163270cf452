"""项目内使用的自定义异常定义。"""


class TranscoderError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(TranscoderError):
    """配置不合法时抛出。"""


class InputPathError(TranscoderError):
    """输入路径不存在或不可访问。"""


class NoInputImagesError(TranscoderError):
    """输入路径中没有可处理的图片。"""


class ProviderUnavailableError(TranscoderError):
    """高级编码器无法加载或无法构建编码池。"""


class EncodeError(TranscoderError):
    """单个编码任务失败。"""


class EncodeTimeoutError(EncodeError):
    """编码调用超过等待时限。"""
