"""
应用配置模块

使用 Pydantic Settings 管理所有环境变量和配置。
配置从项目根目录的 .env 文件读取，支持类型验证和默认值。

关键概念：
- BaseSettings: Pydantic 的配置基类，自动从环境变量读取
- computed_field: 计算字段，根据其他字段动态生成
- model_validator: 模型验证器，用于自定义验证逻辑
"""
import secrets  # 用于生成安全的随机字符串
import warnings  # 用于发出警告
from typing import Annotated, Any, Literal  # 类型注解工具

from pydantic import (
    AnyUrl,  # URL 类型验证
    BeforeValidator,  # 字段验证前的转换器
    HttpUrl,  # HTTP URL 类型验证
    PostgresDsn,  # PostgreSQL 连接字符串验证
    computed_field,  # 计算字段装饰器
    model_validator,  # 模型验证器装饰器
)
from pydantic_settings import BaseSettings, SettingsConfigDict  # 配置管理
from typing_extensions import Self  # 用于类型注解中引用自身类型


def parse_cors(v: Any) -> list[str] | str:
    """
    解析 CORS 配置值

    支持两种格式：
    1. 逗号分隔的字符串："http://localhost:3000,http://localhost:3001"
    2. 列表格式：["http://localhost:3000", "http://localhost:3001"]

    Raises:
        ValueError: 当输入格式不正确时
    """
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",") if i.strip()]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


def parse_admin_users(v: Any) -> list[str]:
    """管理员用户名列表，逗号分隔，统一转小写"""
    if isinstance(v, str):
        return [i.strip().lower() for i in v.split(",") if i.strip()]
    if isinstance(v, list):
        return [str(i).strip().lower() for i in v if str(i).strip()]
    raise ValueError(v)


class Settings(BaseSettings):
    """
    应用配置类

    配置来源优先级：
    1. 环境变量（最高优先级）
    2. .env 文件
    3. 代码中的默认值（最低优先级）
    """
    model_config = SettingsConfigDict(
        # 使用项目根目录的 .env 文件（backend/ 目录的上一级）
        env_file="../.env",
        env_ignore_empty=True,
        extra="ignore",
    )
    API_V1_STR: str = "/api/v1"
    SECRET_KEY: str = secrets.token_urlsafe(32)  # JWT / CSRF 签名密钥（默认随机生成）
    ACCESS_TOKEN_EXPIRE_DAYS: int = 7
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"

    BACKEND_CORS_ORIGINS: Annotated[
        list[AnyUrl] | str, BeforeValidator(parse_cors)
    ] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> list[str]:
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS]

    PROJECT_NAME: str = "Card Shop"
    SENTRY_DSN: HttpUrl | None = None

    # 站点地址：SERVER_HOST 用于拼接支付回调地址，FRONTEND_HOST 用于支付完成后的跳转
    SERVER_HOST: str = "http://localhost:8000"
    FRONTEND_HOST: str = "http://localhost:3000"

    # 管理员用户名（OAuth 用户名，逗号分隔）
    ADMIN_USERS: Annotated[list[str] | str, BeforeValidator(parse_admin_users)] = []

    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = ""

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> PostgresDsn:
        return PostgresDsn.build(
            scheme="postgresql+psycopg",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_SERVER,
            port=self.POSTGRES_PORT,
            path=self.POSTGRES_DB,
        )

    # 库存预占与订单超时（两个独立的 TTL，单位分钟）
    RESERVATION_MINUTES: int = 1  # 预占窗口：超过后卡密重新可售
    PAYMENT_TIMEOUT_MINUTES: int = 5  # 支付超时：超过后待支付订单被取消
    SWEEP_INTERVAL_SECONDS: int = 60  # 定时清理过期订单的间隔

    # EPay 支付网关配置
    PAY_URL: str = "https://credit.linux.do/epay/pay/submit.php"
    PAY_TYPE: str = "epay"
    MERCHANT_ID: str = ""
    MERCHANT_KEY: str = "changethis"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def reservation_window_ms(self) -> int:
        return self.RESERVATION_MINUTES * 60 * 1000

    @computed_field  # type: ignore[prop-decorator]
    @property
    def payment_timeout_ms(self) -> int:
        return self.PAYMENT_TIMEOUT_MINUTES * 60 * 1000

    def _check_default_secret(self, var_name: str, value: str | None) -> None:
        """
        检查敏感配置是否使用了默认值

        本地环境只警告，其它环境直接报错。

        Raises:
            ValueError: 在非本地环境使用默认值时
        """
        if value == "changethis":
            message = (
                f'The value of {var_name} is "changethis", '
                "for security, please change it, at least for deployments."
            )
            if self.ENVIRONMENT == "local":
                warnings.warn(message, stacklevel=1)
            else:
                raise ValueError(message)

    @model_validator(mode="after")
    def _enforce_non_default_secrets(self) -> Self:
        self._check_default_secret("SECRET_KEY", self.SECRET_KEY)
        self._check_default_secret("POSTGRES_PASSWORD", self.POSTGRES_PASSWORD)
        self._check_default_secret("MERCHANT_KEY", self.MERCHANT_KEY)

        return self


# 创建全局配置实例，整个应用共享
settings = Settings()  # type: ignore
