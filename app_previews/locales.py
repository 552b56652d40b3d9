# Fixed upload order across locales. Directories are visited in this order.
LOCALES = (
    "da", "de-DE", "el", "en-AU", "en-CA", "en-GB", "en-US", "es-ES", "es-MX",
    "fi", "fr-CA", "fr-FR", "id", "it", "ja", "ko", "ms", "nl-NL", "no",
    "pt-BR", "pt-PT", "ru", "sv", "th", "tr", "vi", "zh-Hans", "zh-Hant",
)

VIDEO_EXTENSIONS = {'.mp4', '.mov'}
METADATA_EXTENSION = '.json'
POSTER_EXTENSION = '.jpg'

METADATA_KEYS = ('device', 'timestamp', 'order')
