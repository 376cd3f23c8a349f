"""
Validador estrutural de arquivos SPED Fiscal.

Relê o texto gerado (ou enviado pelo usuário), confere a hierarquia e os
totalizadores de encerramento e monta DataFrames por registro para
inspeção.
"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import pandas as pd
from charset_normalizer import from_bytes

from config import get_config
from exceptions import SpedEncodingError, SpedFileError, SpedParseError
from sped_generator import LAYOUTS
from sped_models import ValidacaoSped
from validators import (
    validate_cfop, validate_chave_nfe, validate_cpf_cnpj, validate_cross_reference_totals,
    validate_date_format, validate_numeric_field, validate_registro
)

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = get_config('processing.max_file_size_mb', 500) * 1024 * 1024

# Registro pai → (coluna de índice, registros filhos)
GROUPS = {
    'C100': ('C100_INDEX', ['C170', 'C190']),
    'D100': ('D100_INDEX', ['D190']),
}

NUMERIC_PREFIXES = ('VL_', 'QTD', 'ALIQ_')


# =========================
# FUNÇÕES UTILITÁRIAS
# =========================

def detect_encoding_bytes(raw_data: bytes) -> str:
    """
    Detecta o encoding de um conteúdo em bytes.

    Usa charset_normalizer e, se não houver resultado, tenta os encodings
    de fallback configurados.
    """
    result = from_bytes(raw_data).best()
    if result and result.encoding:
        logger.info(f"Encoding detectado via charset_normalizer: {result.encoding}")
        return result.encoding

    fallback_encodings = get_config('processing.fallback_encodings',
                                    ['latin-1', 'utf-8', 'cp1252'])
    for encoding in fallback_encodings:
        try:
            raw_data.decode(encoding)
            logger.info(f"Encoding detectado via fallback: {encoding}")
            return encoding
        except (UnicodeDecodeError, LookupError):
            continue

    default_encoding = get_config('processing.default_encoding', 'latin-1')
    logger.warning(f"Nenhum encoding detectado, usando padrão: {default_encoding}")
    return default_encoding


def detect_encoding(file_path: Path, sample_bytes: int = None) -> str:
    """
    Detecta o encoding de um arquivo automaticamente.

    Args:
        file_path: Caminho do arquivo
        sample_bytes: Número de bytes a ler para detecção (None = usar config)

    Returns:
        Nome do encoding detectado

    Raises:
        SpedEncodingError: Se não conseguir ler o arquivo
    """
    if sample_bytes is None:
        sample_bytes = get_config('processing.encoding_sample_bytes', 256_000)

    try:
        with file_path.open('rb') as f:
            raw_data = f.read(sample_bytes)
    except OSError as e:
        logger.error(f"Erro ao detectar encoding: {e}")
        raise SpedEncodingError("Falha ao detectar encoding", str(file_path)) from e

    return detect_encoding_bytes(raw_data)


def decodificar_conteudo(dados: bytes) -> str:
    """Decodifica bytes de um arquivo SPED com o encoding detectado."""
    return dados.decode(detect_encoding_bytes(dados), errors='replace')


def dividir_linhas(conteudo: str) -> List[str]:
    """Separa o conteúdo nas linhas do arquivo (CRLF ou LF), sem a quebra final."""
    linhas = re.split(r'\r?\n', conteudo)
    if linhas and linhas[-1] == '':
        linhas.pop()
    return linhas


def parse_sped_line(line: str) -> List[str]:
    """
    Faz o parse de uma linha SPED, removendo pipes inicial e final.

    Args:
        line: Linha do arquivo SPED

    Returns:
        Lista de campos da linha (o primeiro é o código do registro)
    """
    parts = line.rstrip('\r\n').split('|')

    if parts and parts[0] == '':
        parts = parts[1:]

    if parts and parts[-1] == '':
        parts = parts[:-1]

    return parts


def convert_numeric_columns(df: pd.DataFrame, columns: List[str]) -> None:
    """
    Converte colunas numéricas do formato brasileiro para float (in-place).

    Valores inválidos viram NaN.
    """
    for col in columns:
        if col not in df.columns:
            continue

        df[col] = pd.to_numeric(
            df[col].astype(str)
            .str.replace('.', '', regex=False)
            .str.replace(',', '.', regex=False)
            .str.strip(),
            errors='coerce'
        )


def validate_file_path(file_path: Path) -> None:
    """
    Valida se o caminho do arquivo é válido.

    Raises:
        SpedFileError: Se o arquivo não existir, estiver vazio ou for muito grande
    """
    file_path = file_path.resolve().absolute()

    if not file_path.exists():
        raise SpedFileError("Arquivo não encontrado", str(file_path))

    if not file_path.is_file():
        raise SpedFileError("Caminho não é um arquivo", str(file_path))

    file_size = file_path.stat().st_size
    if file_size == 0:
        raise SpedFileError("Arquivo vazio", str(file_path))

    if file_size > MAX_FILE_SIZE:
        max_mb = MAX_FILE_SIZE / (1024*1024)
        actual_mb = file_size / (1024*1024)
        raise SpedFileError(
            f"Arquivo muito grande: {actual_mb:.2f} MB (máximo: {max_mb:.0f} MB)",
            str(file_path)
        )

    if file_path.suffix.lower() not in ['.txt', '.sped', '']:
        logger.warning(f"Extensão incomum: {file_path.suffix}")

    logger.info(f"Arquivo validado: {file_path.name} ({file_size / 1024:.1f} KB)")


# =========================
# CARGA EM DATAFRAMES
# =========================

def _pad_line(parts: List[str], registro: str) -> List[str]:
    expected_len = len(LAYOUTS[registro])
    if len(parts) < expected_len:
        parts = parts + [''] * (expected_len - len(parts))
    return parts[:expected_len]


def carregar_registros(conteudo: str, converter_numeros: bool = True) -> Dict[str, pd.DataFrame]:
    """
    Carrega os registros conhecidos em um DataFrame por código.

    Registros filhos recebem a coluna de índice do pai (``C100_INDEX``,
    ``D100_INDEX``) para permitir agrupamentos.

    Args:
        conteudo: Texto do arquivo SPED
        converter_numeros: Converte colunas VL_/QTD/ALIQ_ para float

    Returns:
        Dicionário código → DataFrame (apenas registros presentes)

    Raises:
        SpedParseError: Se uma linha for curta demais para conter um registro
    """
    rows: Dict[str, List[list]] = {}
    indices = {pai: -1 for pai in GROUPS}
    filhos = {filho: pai for pai, (_, lista) in GROUPS.items() for filho in lista}

    for line_number, raw_line in enumerate(dividir_linhas(conteudo), 1):
        if not raw_line.strip():
            continue
        if len(raw_line) < 5:
            raise SpedParseError(
                "Linha muito curta para conter registro válido",
                line_number=line_number,
                line_content=raw_line
            )

        parts = parse_sped_line(raw_line)
        registro = parts[0]
        if registro not in LAYOUTS:
            continue

        row = _pad_line(parts, registro)
        if registro in GROUPS:
            indices[registro] += 1
            row.append(indices[registro])
        elif registro in filhos:
            row.append(indices[filhos[registro]])
        rows.setdefault(registro, []).append(row)

    dataframes = {}
    for registro, data in rows.items():
        columns = list(LAYOUTS[registro])
        if registro in GROUPS:
            columns.append(GROUPS[registro][0])
        elif registro in filhos:
            columns.append(GROUPS[filhos[registro]][0])

        df = pd.DataFrame(data, columns=columns)
        if converter_numeros:
            convert_numeric_columns(df, [c for c in columns if c.startswith(NUMERIC_PREFIXES)])
        dataframes[registro] = df

    return dataframes


# =========================
# VALIDAÇÃO ESTRUTURAL
# =========================

def _inteiro(valor: str) -> Optional[int]:
    try:
        return int(valor)
    except (TypeError, ValueError):
        return None


def _conferir_totais(conteudo: str) -> List[str]:
    """Avisos de C100 cujo VL_MERC difere da soma dos VL_ITEM dos C170."""
    dataframes = carregar_registros(conteudo)
    c100 = dataframes.get('C100', pd.DataFrame())
    c170 = dataframes.get('C170', pd.DataFrame())
    tolerancia = get_config('validation.tolerance', 0.01)

    divergencias = validate_cross_reference_totals(
        c100, c170, 'C100_INDEX', 'VL_MERC', 'VL_ITEM', tolerance=tolerancia
    )
    return [
        f"C100 {d['num_doc']}: VL_MERC {d['parent_total']:.2f} difere da soma dos C170 "
        f"{d['child_total']:.2f}"
        for d in divergencias
    ]


def _conferir_formatos(valores: Dict[str, str]) -> List[str]:
    """Formato de documentos, chaves, CFOP, datas e valores de um registro."""
    problemas = []
    for nome, valor in valores.items():
        if not valor:
            continue
        if nome in ('CNPJ', 'CPF') and not validate_cpf_cnpj(valor):
            problemas.append(f"{nome} inválido: {valor}")
        elif nome in ('CHV_NFE', 'CHV_CTE') and not validate_chave_nfe(valor):
            problemas.append(f"{nome} deve ter 44 dígitos")
        elif nome == 'CFOP' and not validate_cfop(valor):
            problemas.append(f"CFOP inválido: {valor}")
        elif nome.startswith('DT_') and not validate_date_format(valor):
            problemas.append(f"{nome} fora do formato DDMMAAAA: {valor}")
        elif nome.startswith(NUMERIC_PREFIXES) and not validate_numeric_field(valor):
            problemas.append(f"{nome} não numérico: {valor}")
    return problemas


def validar_sped(conteudo: str) -> ValidacaoSped:
    """
    Valida a estrutura de um arquivo SPED.

    Confere abertura (0000) e encerramento (9999), delimitadores, códigos
    de registro, as quantidades declaradas nos 9900, os X990 de cada bloco,
    o 9990 e o 9999. Campos obrigatórios vazios e divergências entre C100 e
    seus itens são reportados como avisos.

    Args:
        conteudo: Texto do arquivo

    Returns:
        ValidacaoSped com erros, avisos e contagem real por registro
    """
    if not conteudo or not conteudo.strip():
        return ValidacaoSped(valido=False, erros=["Arquivo vazio"])

    erros: List[str] = []
    avisos: List[str] = []
    registros: List[Tuple[int, str, List[str]]] = []
    malformado = False

    for line_number, line in enumerate(dividir_linhas(conteudo), 1):
        if not line.strip():
            erros.append(f"Linha {line_number}: linha vazia")
            continue
        if not (line.startswith('|') and line.endswith('|')):
            erros.append(f"Linha {line_number}: delimitador '|' ausente no início ou no fim")
            malformado = True
        campos = parse_sped_line(line)
        codigo = campos[0] if campos else ''
        if len(codigo) != 4:
            erros.append(f"Linha {line_number}: código de registro inválido '{codigo}'")
            malformado = True
        registros.append((line_number, codigo, campos))

    if not registros:
        return ValidacaoSped(valido=False, erros=erros or ["Arquivo vazio"])

    df = pd.DataFrame(
        [(n, codigo, codigo[:1]) for n, codigo, _ in registros],
        columns=['LINHA', 'REG', 'BLOCO']
    )
    contagem = {reg: int(qtd) for reg, qtd in df.groupby('REG', sort=False).size().items()}
    linhas_por_bloco = {b: int(qtd) for b, qtd in df.groupby('BLOCO', sort=False).size().items()}
    total_linhas = len(registros)

    if registros[0][1] != '0000':
        erros.append("Primeiro registro deve ser 0000")
    if registros[-1][1] != '9999':
        erros.append("Último registro deve ser 9999")

    declarados: Dict[str, int] = {}
    for line_number, codigo, campos in registros:
        valor = campos[1] if len(campos) > 1 else ''

        if codigo == '9900':
            reg = campos[1] if len(campos) > 1 else ''
            qtd = _inteiro(campos[2] if len(campos) > 2 else '')
            if qtd is None:
                erros.append(f"Linha {line_number}: quantidade inválida no 9900 de {reg}")
                continue
            if reg in declarados:
                erros.append(f"Linha {line_number}: 9900 duplicado para o registro {reg}")
                continue
            declarados[reg] = qtd

        elif codigo == '9990':
            if _inteiro(valor) != linhas_por_bloco.get('9', 0):
                erros.append(
                    f"9990 declara {valor} linhas, Bloco 9 possui {linhas_por_bloco.get('9', 0)}"
                )

        elif codigo == '9999':
            if _inteiro(valor) != total_linhas:
                erros.append(f"9999 declara {valor} linhas, arquivo possui {total_linhas}")

        elif codigo.endswith('990'):
            bloco = codigo[0]
            if _inteiro(valor) != linhas_por_bloco.get(bloco, 0):
                erros.append(
                    f"{codigo} declara {valor} linhas, Bloco {bloco} possui {linhas_por_bloco.get(bloco, 0)}"
                )

        elif codigo in LAYOUTS:
            valores = dict(zip(LAYOUTS[codigo], campos))
            faltando = validate_registro(codigo, valores)
            if faltando:
                avisos.append(f"Linha {line_number}: {codigo} sem {', '.join(faltando)}")
            avisos.extend(
                f"Linha {line_number}: {codigo} {problema}" for problema in _conferir_formatos(valores)
            )

    for abertura in (reg for reg in contagem if reg.endswith('001')):
        encerramento = f"{abertura[0]}990"
        if encerramento not in contagem:
            erros.append(f"Bloco {abertura[0]} sem registro de encerramento {encerramento}")

    if not declarados:
        erros.append("Nenhum registro 9900 encontrado")
    else:
        for reg, qtd in declarados.items():
            encontrados = contagem.get(reg, 0)
            if qtd != encontrados:
                erros.append(f"9900 declara {qtd} registro(s) {reg}, encontrado(s) {encontrados}")
        for reg in contagem:
            if reg not in declarados:
                erros.append(f"Registro {reg} sem 9900 correspondente")

    if not malformado and get_config('validation.cross_check_totals', True):
        avisos.extend(_conferir_totais(conteudo))

    if erros:
        logger.warning(f"Validação encontrou {len(erros)} erro(s)")
    logger.info(f"Validação concluída: {total_linhas} linhas, {len(avisos)} aviso(s)")

    return ValidacaoSped(valido=not erros, erros=erros, avisos=avisos, contagem=contagem)


def validar_arquivo(file_path: Union[str, Path]) -> ValidacaoSped:
    """
    Lê um arquivo SPED do disco e valida seu conteúdo.

    Raises:
        SpedFileError: Se o arquivo for inválido
        SpedEncodingError: Se não conseguir detectar o encoding
    """
    file_path = Path(file_path)
    validate_file_path(file_path)
    encoding = detect_encoding(file_path)

    with file_path.open('r', encoding=encoding, errors='replace', newline='') as f:
        conteudo = f.read()

    return validar_sped(conteudo)
