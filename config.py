"""
Carregamento de configurações do gerador SPED.

As configurações ficam em ``config.yaml`` ao lado dos módulos. Toda chave
lida através de :func:`get_config` possui um valor padrão no código, de modo
que a ausência do arquivo não impede a geração.
"""

import logging
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILE = Path(__file__).parent / 'config.yaml'


def load_config(config_file: Path = CONFIG_FILE) -> dict:
    """
    Carrega o arquivo YAML de configuração.

    Args:
        config_file: Caminho do arquivo YAML

    Returns:
        Dicionário de configurações (vazio se o arquivo não existir ou for inválido)
    """
    try:
        if config_file.exists():
            with open(config_file, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
            logger.info(f"Configurações carregadas de {config_file}")
            return data
        logger.warning(f"Arquivo de configuração não encontrado: {config_file}")
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Erro ao carregar configurações: {e}. Usando valores padrão.")
    return {}


CONFIG = load_config()


def get_config(path: str, default=None):
    """Obtém valor de configuração usando notação de ponto (ex: 'sped.layout_version')"""
    keys = path.split('.')
    value = CONFIG
    for key in keys:
        if isinstance(value, dict):
            value = value.get(key)
        else:
            return default
    return value if value is not None else default
