"""
Serviço de geração do SPED Fiscal.

Busca os dados do período em uma fonte de dados, monta e valida o arquivo
EFD ICMS/IPI e devolve um ``SpedResult``. Também lista os períodos com
movimentação e expõe a interface de linha de comando.
"""

import logging
import re
import sys
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import pandas as pd
import yaml

from config import get_config
from exceptions import SpedConfigError, SpedDataError, SpedError
from formatters import somente_digitos
from metrics import GenerationMetrics
from sped_generator import gerar_sped_fiscal
from sped_models import (
    Contabilista, DadosSped, DocumentoFiscal, Empresa, Inventario,
    ItemInventario, MotivoInventario, Participante, PeriodoDisponivel, Produto, SpedConfig,
    SpedParams, SpedResult, TipoOperacao, Unidade, ValidacaoSped
)
from sped_validator import validar_arquivo, validar_sped
from validators import validate_empresa

# Configuração de logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class CarregadorDados(yaml.SafeLoader):
    """SafeLoader que preserva como texto números com zero à esquerda (0150, NCM 01012100)."""


def _inteiro_ou_codigo(loader: CarregadorDados, node: yaml.ScalarNode):
    valor = loader.construct_scalar(node)
    if re.fullmatch(r'0[0-9_]+', valor):
        return valor
    return loader.construct_yaml_int(node)


CarregadorDados.add_constructor('tag:yaml.org,2002:int', _inteiro_ou_codigo)


def carregar_yaml(stream) -> Any:
    """Lê um arquivo de dados YAML com o CarregadorDados."""
    return yaml.load(stream, Loader=CarregadorDados)


# =========================
# FONTES DE DADOS
# =========================

class FonteDadosSped(ABC):
    """
    Consultas de leitura usadas na geração.

    Todas as consultas são independentes entre si e podem ser executadas
    em paralelo.
    """

    @abstractmethod
    def buscar_empresa(self, empresa_id: str) -> Optional[Empresa]:
        ...

    def buscar_contador(self, empresa_id: str) -> Optional[Contabilista]:
        return None

    @abstractmethod
    def buscar_participantes(self, empresa_id: str, inicio: date, fim: date) -> List[Participante]:
        ...

    @abstractmethod
    def buscar_produtos(self, empresa_id: str, inicio: date, fim: date) -> List[Produto]:
        ...

    def buscar_unidades(self, empresa_id: str) -> Optional[List[Unidade]]:
        """Unidades explícitas; None faz o gerador derivá-las dos produtos e itens."""
        return None

    @abstractmethod
    def buscar_documentos(self, empresa_id: str, tipo: TipoOperacao,
                          inicio: date, fim: date) -> List[DocumentoFiscal]:
        ...

    @abstractmethod
    def buscar_inventario(self, empresa_id: str, data: date) -> List[ItemInventario]:
        ...

    @abstractmethod
    def listar_documentos(self, empresa_id: str) -> List[DocumentoFiscal]:
        """Todos os documentos da empresa, de entrada e de saída."""
        ...


class FonteDadosMemoria(FonteDadosSped):
    """
    Fonte de dados em memória para uma empresa.

    Participantes e produtos devolvidos são apenas os referenciados pelos
    documentos do período e pelos itens em estoque, para que o inventário
    tenha seus 0150 e 0200.
    """

    def __init__(self, empresa: Empresa, contador: Optional[Contabilista] = None,
                 participantes: Iterable[Participante] = (), produtos: Iterable[Produto] = (),
                 documentos: Iterable[DocumentoFiscal] = (), inventario: Iterable[ItemInventario] = (),
                 unidades: Optional[Iterable[Unidade]] = None):
        self.empresa = empresa
        self.contador = contador
        self.participantes = list(participantes)
        self.produtos = list(produtos)
        self.documentos = list(documentos)
        self.inventario = list(inventario)
        self.unidades = list(unidades) if unidades is not None else None

    @classmethod
    def from_dict(cls, dados: Dict[str, Any]) -> 'FonteDadosMemoria':
        """
        Monta a fonte a partir de um dicionário (normalmente lido de YAML).

        Raises:
            SpedDataError: Se faltar a seção ``empresa`` ou algum item for inválido
        """
        if not isinstance(dados, dict) or not dados.get('empresa'):
            raise SpedDataError("Dados sem a seção 'empresa'")

        try:
            contador = dados.get('contador')
            unidades = dados.get('unidades')
            return cls(
                empresa=Empresa.from_dict(dados['empresa']),
                contador=Contabilista(**{k: str(v) for k, v in contador.items()}) if contador else None,
                participantes=[Participante.from_dict(p) for p in dados.get('participantes') or []],
                produtos=[Produto.from_dict(p) for p in dados.get('produtos') or []],
                documentos=[DocumentoFiscal.from_dict(d) for d in dados.get('documentos') or []],
                inventario=[ItemInventario.from_dict(i) for i in dados.get('inventario') or []],
                unidades=[Unidade(str(u['codigo']), str(u['descricao'])) for u in unidades]
                if unidades is not None else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SpedDataError(f"Dados inválidos: {e}") from e

    @classmethod
    def from_yaml(cls, file_path: Union[str, Path]) -> 'FonteDadosMemoria':
        """
        Carrega a fonte de um arquivo YAML.

        Raises:
            SpedDataError: Se o arquivo não puder ser lido ou interpretado
        """
        file_path = Path(file_path)
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                dados = carregar_yaml(f)
        except (OSError, yaml.YAMLError) as e:
            raise SpedDataError(f"Erro ao ler dados: {e}", str(file_path)) from e

        logger.info(f"Dados carregados de {file_path}")
        return cls.from_dict(dados)

    def _do_periodo(self, inicio: date, fim: date) -> List[DocumentoFiscal]:
        return [d for d in self.documentos if inicio <= d.data_emissao <= fim]

    def buscar_empresa(self, empresa_id: str) -> Optional[Empresa]:
        if str(self.empresa.id) != str(empresa_id):
            return None
        return self.empresa

    def buscar_contador(self, empresa_id: str) -> Optional[Contabilista]:
        return self.contador

    def buscar_participantes(self, empresa_id: str, inicio: date, fim: date) -> List[Participante]:
        codigos = {d.participante_codigo for d in self._do_periodo(inicio, fim)}
        codigos.update(
            item.participante_codigo for item in self.inventario
            if item.participante_codigo and (item.quantidade or 0) > 0
        )
        return [p for p in self.participantes if p.codigo in codigos]

    def buscar_produtos(self, empresa_id: str, inicio: date, fim: date) -> List[Produto]:
        codigos = {item.produto_codigo for d in self._do_periodo(inicio, fim) for item in d.itens}
        codigos.update(item.produto_codigo for item in self.inventario)
        return [p for p in self.produtos if p.codigo in codigos]

    def buscar_unidades(self, empresa_id: str) -> Optional[List[Unidade]]:
        return self.unidades

    def buscar_documentos(self, empresa_id: str, tipo: TipoOperacao,
                          inicio: date, fim: date) -> List[DocumentoFiscal]:
        return [d for d in self._do_periodo(inicio, fim) if d.tipo is tipo]

    def buscar_inventario(self, empresa_id: str, data: date) -> List[ItemInventario]:
        return [item for item in self.inventario if (item.quantidade or 0) > 0]

    def listar_documentos(self, empresa_id: str) -> List[DocumentoFiscal]:
        if self.buscar_empresa(empresa_id) is None:
            return []
        return list(self.documentos)


# =========================
# GERAÇÃO
# =========================

def nome_arquivo_sped(cnpj: str, data_inicial: date) -> str:
    """Nome sugerido: SPED_{cnpj}_{AAAAMM}.txt"""
    return f"SPED_{cnpj}_{data_inicial.year:04d}{data_inicial.month:02d}.txt"


def _buscar_dados(params: SpedParams, fonte: FonteDadosSped, empresa: Empresa) -> DadosSped:
    """Executa as consultas do período em paralelo e monta o DadosSped."""
    inicio, fim = params.data_inicial, params.data_final
    empresa_id = params.empresa_id
    max_workers = get_config('processing.max_workers', 4)

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        f_contador = executor.submit(fonte.buscar_contador, empresa_id)
        f_participantes = executor.submit(fonte.buscar_participantes, empresa_id, inicio, fim)
        f_produtos = executor.submit(fonte.buscar_produtos, empresa_id, inicio, fim)
        f_unidades = executor.submit(fonte.buscar_unidades, empresa_id)
        f_entradas = executor.submit(fonte.buscar_documentos, empresa_id, TipoOperacao.ENTRADA, inicio, fim)
        f_saidas = executor.submit(fonte.buscar_documentos, empresa_id, TipoOperacao.SAIDA, inicio, fim)
        data_inventario = params.data_inventario or fim
        f_inventario = (
            executor.submit(fonte.buscar_inventario, empresa_id, data_inventario)
            if params.incluir_inventario else None
        )

        inventario = None
        if f_inventario is not None:
            itens = [item for item in f_inventario.result() if (item.quantidade or 0) > 0]
            inventario = Inventario(data=data_inventario, itens=itens, motivo=params.motivo_inventario)

        entradas = f_entradas.result()
        saidas = f_saidas.result()
        logger.info(f"Documentos no período: {len(entradas)} entrada(s), {len(saidas)} saída(s)")

        return DadosSped(
            config=SpedConfig(inicio, fim, empresa, f_contador.result()),
            participantes=f_participantes.result(),
            produtos=f_produtos.result(),
            documentos=entradas + saidas,
            unidades=f_unidades.result(),
            inventario=inventario,
        )


def gerar_arquivo_sped(params: SpedParams, fonte: FonteDadosSped) -> SpedResult:
    """
    Gera o arquivo SPED Fiscal de uma empresa no período.

    Nenhuma exceção escapa desta função: falhas viram
    ``SpedResult(sucesso=False, erro=...)``.

    Args:
        params: Empresa, período e opções de inventário
        fonte: Fonte dos dados fiscais

    Returns:
        SpedResult com conteúdo, nome do arquivo, validação e métricas
    """
    metrics = GenerationMetrics()

    try:
        logger.info(
            f"Gerando SPED da empresa {params.empresa_id}: "
            f"{params.data_inicial:%d/%m/%Y} a {params.data_final:%d/%m/%Y}"
        )
        empresa = fonte.buscar_empresa(params.empresa_id)
        faltando = validate_empresa(empresa)
        if faltando:
            raise SpedConfigError("Empresa com dados fiscais incompletos", faltando)

        dados = _buscar_dados(params, fonte, empresa)
        conteudo = gerar_sped_fiscal(dados, metrics)
        validacao = validar_sped(conteudo)

        nome_arquivo = nome_arquivo_sped(somente_digitos(empresa.cnpj), params.data_inicial)
        metrics.arquivo_gerado = nome_arquivo
        metrics.log_summary()

        if not validacao.valido:
            logger.warning(f"Arquivo gerado com {len(validacao.erros)} erro(s) estrutural(is)")

        return SpedResult(
            sucesso=True,
            conteudo=conteudo,
            nome_arquivo=nome_arquivo,
            validacao=validacao,
            metricas=metrics.to_dict(),
        )

    except Exception as e:
        logger.error(f"Erro na geração do SPED: {e}")
        return SpedResult(sucesso=False, erro=str(e) or "Erro interno na geração do SPED")


def validar_conteudo(conteudo: str) -> ValidacaoSped:
    """Valida um texto SPED qualquer."""
    return validar_sped(conteudo)


def listar_periodos_disponiveis(empresa_id: str, fonte: FonteDadosSped) -> List[PeriodoDisponivel]:
    """
    Lista os meses com documentos fiscais, do mais recente para o mais antigo.

    Args:
        empresa_id: Identificador da empresa
        fonte: Fonte dos dados fiscais

    Returns:
        Lista de PeriodoDisponivel com quantidade e valor total das notas
    """
    documentos = fonte.listar_documentos(empresa_id)
    if not documentos:
        return []

    df = pd.DataFrame([
        {
            'ano': d.data_emissao.year,
            'mes': d.data_emissao.month,
            'valor': float(d.valor_total or 0),
        }
        for d in documentos
    ])

    resumo = (
        df.groupby(['ano', 'mes'])
        .agg(total_notas=('valor', 'size'), valor_total=('valor', 'sum'))
        .reset_index()
        .sort_values(['ano', 'mes'], ascending=False)
    )

    return [
        PeriodoDisponivel(
            mes=int(row.mes),
            ano=int(row.ano),
            tem_dados=True,
            total_notas=int(row.total_notas),
            valor_total=round(float(row.valor_total), 2),
        )
        for row in resumo.itertuples(index=False)
    ]


def salvar_arquivo(resultado: SpedResult, destino: Union[str, Path]) -> Path:
    """
    Grava o conteúdo gerado preservando os terminadores de linha.

    Raises:
        SpedError: Se o resultado não contiver conteúdo
    """
    if not resultado.sucesso or resultado.conteudo is None:
        raise SpedError(resultado.erro or "Nenhum conteúdo para gravar")

    destino = Path(destino)
    if destino.is_dir():
        destino = destino / resultado.nome_arquivo

    encoding = get_config('output.encoding', 'latin-1')
    with open(destino, 'w', encoding=encoding, errors='replace', newline='') as f:
        f.write(resultado.conteudo)

    logger.info(f"Arquivo gravado: {destino}")
    return destino


# =========================
# INTERFACE DE LINHA DE COMANDO
# =========================

def _imprimir_validacao(validacao: ValidacaoSped) -> None:
    print(f"Válido: {'sim' if validacao.valido else 'não'}")
    for erro in validacao.erros:
        print(f"  ERRO: {erro}")
    for aviso in validacao.avisos:
        print(f"  AVISO: {aviso}")
    for registro, qtd in validacao.contagem.items():
        print(f"  {registro}: {qtd}")


def main(argv: Optional[List[str]] = None) -> int:
    """
    Ponto de entrada da linha de comando.

    Returns:
        Código de saída (0 = sucesso)
    """
    import argparse

    parser = argparse.ArgumentParser(
        description="Gerador SPED Fiscal (EFD ICMS/IPI)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exemplos de uso:

  # Gera o arquivo de março/2026
  python sped_service.py gerar dados.yaml --empresa EMP1 --mes 3 --ano 2026 --out saida/

  # Valida um arquivo existente
  python sped_service.py validar SPED_11222333000181_202603.txt

  # Lista os períodos com movimentação
  python sped_service.py periodos dados.yaml --empresa EMP1
        """
    )
    parser.add_argument(
        "--log-level",
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default='INFO',
        help="Nível de log (padrão: INFO)"
    )
    subparsers = parser.add_subparsers(dest="comando", required=True)

    p_gerar = subparsers.add_parser("gerar", help="Gera o arquivo SPED de um mês")
    p_gerar.add_argument("dados", help="Arquivo YAML com os dados fiscais")
    p_gerar.add_argument("--empresa", required=True, help="Identificador da empresa")
    p_gerar.add_argument("--mes", type=int, required=True)
    p_gerar.add_argument("--ano", type=int, required=True)
    p_gerar.add_argument("--inventario", action="store_true", help="Inclui o Bloco H")
    p_gerar.add_argument(
        "--motivo",
        choices=[m.value for m in MotivoInventario],
        default=MotivoInventario.FINAL_PERIODO.value,
        help="Motivo do inventário (H005); diferente de 01 gera H020"
    )
    p_gerar.add_argument("--out", default=".", help="Arquivo ou diretório de saída")

    p_validar = subparsers.add_parser("validar", help="Valida um arquivo SPED")
    p_validar.add_argument("arquivo")

    p_periodos = subparsers.add_parser("periodos", help="Lista períodos com movimentação")
    p_periodos.add_argument("dados", help="Arquivo YAML com os dados fiscais")
    p_periodos.add_argument("--empresa", required=True)

    args = parser.parse_args(argv)
    logging.getLogger().setLevel(getattr(logging, args.log_level))

    try:
        if args.comando == "gerar":
            fonte = FonteDadosMemoria.from_yaml(args.dados)
            params = SpedParams.do_mes(
                args.empresa, args.mes, args.ano, incluir_inventario=args.inventario,
                motivo_inventario=MotivoInventario(args.motivo)
            )
            resultado = gerar_arquivo_sped(params, fonte)
            if not resultado.sucesso:
                logger.error(resultado.erro)
                return 1
            salvar_arquivo(resultado, args.out)
            _imprimir_validacao(resultado.validacao)
            return 0 if resultado.validacao.valido else 2

        if args.comando == "validar":
            validacao = validar_arquivo(args.arquivo)
            _imprimir_validacao(validacao)
            return 0 if validacao.valido else 2

        fonte = FonteDadosMemoria.from_yaml(args.dados)
        for periodo in listar_periodos_disponiveis(args.empresa, fonte):
            print(f"{periodo.mes:02d}/{periodo.ano}: {periodo.total_notas} nota(s), "
                  f"R$ {periodo.valor_total:.2f}")
        return 0

    except SpedError as e:
        logger.error(f"Erro: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
