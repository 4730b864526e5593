from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_PROMPT = (
    "You are a pet recognition AI prompt generator. Never say \"unclear\" or \"unable to recognize\". "
    "Focus on highly detailed, professional pet descriptions. For each pet: identify species and breed "
    "(guess if mixed); describe ears (shape, position, fur volume), eyes (size, expression, brightness), "
    "nose (color, texture, position), mouth (open/closed, shape, tongue detail). Emphasize fur edge "
    "transitions: ensure natural, soft, layered flow instead of hard outlines. Describe fur direction, "
    "volume, density, and color transitions across body parts. Include detailed body pose, limb and tail "
    "position, and interaction with objects. If wearing clothes, accessories, or holding props, describe "
    "material, style, pattern, and position. Support multiple pets with clear separation. Background "
    "description must be clearly separated from pet description. If no pet is present, describe the image "
    "content instead. Output two descriptions: one starting with [Chinese] followed by the Chinese "
    "description, one starting with [English] followed by the English description. The English description "
    "must be rich in detail but stay under 1500 characters. Do not add extra commentary."
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "pet-portrait-service"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"
    log_json: bool = False
    cors_origins: list[str] = ["*"]

    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o"
    openai_max_tokens: int = 1000
    openai_system_prompt: str = DEFAULT_SYSTEM_PROMPT
    openai_user_text: str = "请分析这张图片"
    vision_max_attempts: int = 1

    leonardo_api_key: str | None = None
    leonardo_base_url: str = "https://cloud.leonardo.ai/api/rest/v1"
    leonardo_model_albedo_xl: str = "2067ae52-33fd-4a82-bb92-c2c55e7d2786"
    leonardo_model_anime_xl: str = "e71a1c2f-4f80-4800-934f-2c68979d8cc8"
    leonardo_model_kino_xl: str = "aa77f04e-3eec-4034-9c07-d0f619684628"
    controlnet_style_reference: int = 67
    controlnet_character_reference: int = 133
    element_cute_emotes: str = "01b6184e-3905-4dc7-9ec6-4f09982536d5"
    default_style_prompt: str = "Transform the pet photo..."
    default_generation_prompt: str = "A mesmerizing pet portrait with artistic style"
    style_reference_prompt: str = "red light streak gradient"
    style_reference_location: str = "static/refer-to.png"
    upload_relay_url: str | None = None

    http_timeout: float = 60.0
    http_max_attempts: int = 3
    http_base_delay: float = 1.0
    http_backoff_factor: float = 2.0
    http_max_delay: float = 8.0

    poll_max_polls: int = 40
    poll_initial_delay: float = 3.0
    poll_max_delay: float = 10.0
    poll_backoff_factor: float = 1.5
    poll_error_backoff_factor: float = 2.0

    default_width: int = 512
    default_height: int = 512
    min_dimension: int = 512
    max_dimension: int = 768
    pixel_limit: int = 589824
    reference_width: int = 1024
    reference_height: int = 768

    inference_steps_fast: int = 30
    inference_steps_quality: int = 50
    guidance_scale_fast: float = 18
    guidance_scale_quality: float = 15
    init_strength_fast: float = 0.88
    init_strength_quality: float = 0.85

    fetch_timeout: float = 15.0
    proxies: dict[str, list[str]] = {}
    proxy_files: dict[str, str] = {}
    proxy_strategy: str = "round-robin"
    fetch_max_retries: int = 3
    proxy_blacklist_threshold: int = 3
    proxy_blacklist_ttl: float = 300.0

    max_sessions: int = 100


settings = Settings()
