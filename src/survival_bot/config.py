"""配置加载模块 - 从环境变量和 .env 文件加载配置。"""

from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_KILL_SECRET = "changeme"


class RunMode(str, Enum):
    """运行模式枚举。"""

    PAPER = "paper"  # 纸交易
    LIVE = "live"  # 实盘


class LogFormat(str, Enum):
    """日志格式枚举。"""

    JSON = "json"
    CONSOLE = "console"


class Settings(BaseSettings):
    """系统配置设置。

    从环境变量和 .env 文件加载配置。
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==================== 运行模式 ====================
    mode: RunMode = Field(default=RunMode.PAPER, description="运行模式: paper 或 live")

    # ==================== Binance API ====================
    binance_api_key: str = Field(default="", description="Binance API Key")
    binance_api_secret: str = Field(default="", description="Binance API Secret")
    binance_testnet: bool = Field(default=True, description="是否使用 Binance 测试网")
    quote_asset: str = Field(default="USDC", description="计价货币")

    # ==================== Discord / Oracle ====================
    discord_bot_token: str = Field(default="", description="Discord Bot Token")
    discord_channel_id: str = Field(default="", description="Discord 频道 ID")
    oracle_user_id: str = Field(default="", description="决策机器人的 Discord 用户 ID")
    oracle_poll_interval_sec: float = Field(
        default=2.0,
        gt=0.0,
        le=30.0,
        description="轮询回复间隔（秒）",
    )
    oracle_poll_max_attempts: int = Field(
        default=30,
        ge=1,
        le=300,
        description="轮询最大次数",
    )
    oracle_request_timeout: int = Field(default=30, description="Discord 请求超时（秒）")

    # ==================== 情绪指数 ====================
    fear_greed_url: str = Field(
        default="https://api.alternative.me/fng/?limit=1",
        description="恐惧贪婪指数接口",
    )
    sentiment_timeout: int = Field(default=10, description="情绪指数请求超时（秒）")

    # ==================== 风控参数 ====================
    min_balance_usdc: float = Field(
        default=5.0,
        ge=0.0,
        description="最低保留余额（计价货币）",
    )
    max_open_positions: int = Field(
        default=2,
        ge=1,
        le=10,
        description="最大同时持仓数",
    )
    max_stop_loss_pct: float = Field(
        default=5.0,
        gt=0.0,
        le=50.0,
        description="止损距离上限（入场价百分比）",
    )
    conservative_loss_streak: int = Field(
        default=3,
        ge=1,
        le=20,
        description="触发超保守模式的连续亏损次数",
    )

    # ==================== 循环参数 ====================
    top_markets: int = Field(default=10, ge=1, le=50, description="提示中列出的市场数量")
    cycle_interval_min: int = Field(default=10, ge=1, le=1440, description="循环间隔（分钟）")
    serialize_cycles: bool = Field(
        default=True,
        description="手动触发的循环是否等待正在运行的循环结束",
    )

    # ==================== 纸交易 ====================
    paper_initial_balance: float = Field(default=100.0, gt=0.0, description="纸交易初始余额")
    paper_slippage_bps: float = Field(default=5.0, ge=0.0, le=100.0, description="纸交易滑点（bps）")
    paper_fee_rate: float = Field(default=0.001, ge=0.0, le=0.01, description="纸交易手续费率")

    # ==================== API 服务 ====================
    api_host: str = Field(default="0.0.0.0", description="API 监听地址")
    api_port: int = Field(default=3001, ge=1, le=65535, description="API 监听端口")
    kill_secret: str = Field(default=DEFAULT_KILL_SECRET, description="紧急停机密钥")

    # ==================== 日志配置 ====================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="日志级别",
    )
    log_format: LogFormat = Field(
        default=LogFormat.CONSOLE,
        description="日志输出格式",
    )

    # ==================== 数据存储 ====================
    database_url: str = Field(
        default="sqlite+aiosqlite:///data/survival_bot.db",
        description="数据库连接串",
    )
    data_dir: Path = Field(
        default=Path("data"),
        description="本地数据目录",
    )

    @field_validator("data_dir", mode="before")
    @classmethod
    def parse_data_dir(cls, v: str | Path) -> Path:
        """将字符串转换为 Path 对象。"""
        return Path(v) if isinstance(v, str) else v

    @field_validator("quote_asset", mode="before")
    @classmethod
    def normalize_quote_asset(cls, v: str) -> str:
        """计价货币统一为大写。"""
        return v.strip().upper() if isinstance(v, str) else v

    def ensure_directories(self) -> None:
        """确保必要的目录存在。"""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def is_paper_mode(self) -> bool:
        """是否为纸交易模式。"""
        return self.mode == RunMode.PAPER

    @property
    def is_live_mode(self) -> bool:
        """是否为实盘模式。"""
        return self.mode == RunMode.LIVE

    @property
    def paper_state_file(self) -> Path:
        """纸交易状态文件路径。"""
        return self.data_dir / "paper_state.json"

    def validate_for_mode(self) -> list[str]:
        """验证当前模式的必要配置，返回缺失项列表。"""
        missing = []
        if self.is_live_mode:
            if not self.binance_api_key:
                missing.append("BINANCE_API_KEY")
            if not self.binance_api_secret:
                missing.append("BINANCE_API_SECRET")
        if not self.discord_bot_token:
            missing.append("DISCORD_BOT_TOKEN")
        if not self.discord_channel_id:
            missing.append("DISCORD_CHANNEL_ID")
        if not self.oracle_user_id:
            missing.append("ORACLE_USER_ID")
        return missing


# 全局配置实例（延迟初始化）
_settings: Settings | None = None


def get_settings() -> Settings:
    """获取全局配置实例。"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """重新加载配置。"""
    global _settings
    _settings = Settings()
    return _settings
