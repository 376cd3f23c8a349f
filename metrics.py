"""
Módulo de métricas de geração SPED.

Mantém a contagem de registros emitidos por tipo e por bloco durante a
montagem do arquivo. Essa contagem é a fonte dos registros de
encerramento de bloco (X990) e do Bloco 9 (9900, 9990 e 9999).
"""

import time
from dataclasses import dataclass, field
from typing import Dict, List
from collections import defaultdict
import logging

logger = logging.getLogger(__name__)


@dataclass
class GenerationMetrics:
    """
    Métricas de geração de arquivos SPED.

    Attributes:
        registros_por_tipo: Contador de registros por código, na ordem de primeira emissão
        linhas_por_bloco: Contador de linhas por bloco
        documentos_por_bloco: Documentos fiscais escriturados por bloco
        itens_inventario_descartados: Itens de inventário sem quantidade positiva
        warnings: Avisos emitidos durante a montagem
        tempo_inicio: Timestamp de início da geração
        tempo_fim: Timestamp de fim da geração
        arquivo_gerado: Nome sugerido do arquivo
    """

    registros_por_tipo: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    linhas_por_bloco: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    documentos_por_bloco: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    itens_inventario_descartados: int = 0
    warnings: List[str] = field(default_factory=list)
    tempo_inicio: float = field(default_factory=time.time)
    tempo_fim: float = 0.0
    arquivo_gerado: str = ""

    def increment_registro(self, tipo_registro: str) -> None:
        """
        Incrementa os contadores de um registro emitido.

        Args:
            tipo_registro: Código do registro (ex: 'C100')
        """
        self.registros_por_tipo[tipo_registro] += 1
        self.linhas_por_bloco[tipo_registro[0]] += 1

    def increment_documento(self, bloco: str) -> None:
        self.documentos_por_bloco[bloco] += 1

    def add_warning(self, warning: str) -> None:
        """Registra um aviso de montagem (mantém os 100 mais recentes)."""
        logger.warning(warning)
        self.warnings.append(warning)
        del self.warnings[:-100]

    def finalizar(self) -> None:
        """Marca o fim da geração e registra timestamp."""
        self.tempo_fim = time.time()

    @property
    def total_linhas(self) -> int:
        return sum(self.registros_por_tipo.values())

    @property
    def tempo_processamento(self) -> float:
        fim = self.tempo_fim if self.tempo_fim > 0 else time.time()
        return fim - self.tempo_inicio

    def log_summary(self) -> None:
        """Registra resumo das métricas no log."""
        logger.info("=" * 60)
        logger.info("RESUMO DA GERAÇÃO")
        logger.info("=" * 60)

        if self.arquivo_gerado:
            logger.info(f"Arquivo: {self.arquivo_gerado}")

        logger.info(f"Total de linhas: {self.total_linhas:,}")
        for bloco, qtd in self.linhas_por_bloco.items():
            logger.info(f"  Bloco {bloco}: {qtd:,} linhas")
        for bloco, qtd in self.documentos_por_bloco.items():
            logger.info(f"  Documentos no bloco {bloco}: {qtd:,}")
        if self.itens_inventario_descartados:
            logger.info(f"Itens de inventário descartados: {self.itens_inventario_descartados:,}")
        logger.info(f"Tempo de geração: {self.tempo_processamento:.2f}s")

        if self.registros_por_tipo:
            logger.debug("Registros emitidos:")
            for tipo, qtd in self.registros_por_tipo.items():
                logger.debug(f"  {tipo}: {qtd:,}")

        if self.warnings:
            logger.info(f"Total de avisos: {len(self.warnings)}")
            for warning in self.warnings[-5:]:
                logger.info(f"  - {warning}")

        logger.info("=" * 60)

    def to_dict(self) -> Dict:
        """Resumo serializável, anexado ao SpedResult."""
        return {
            'arquivo': self.arquivo_gerado,
            'total_linhas': self.total_linhas,
            'linhas_por_bloco': dict(self.linhas_por_bloco),
            'documentos_por_bloco': dict(self.documentos_por_bloco),
            'itens_inventario_descartados': self.itens_inventario_descartados,
            'tempo_segundos': round(self.tempo_processamento, 2),
            'registros_por_tipo': dict(self.registros_por_tipo),
            'total_warnings': len(self.warnings)
        }

    def __str__(self) -> str:
        return (
            f"GenerationMetrics("
            f"linhas={self.total_linhas}, "
            f"tipos={len(self.registros_por_tipo)}, "
            f"tempo={self.tempo_processamento:.2f}s)"
        )
