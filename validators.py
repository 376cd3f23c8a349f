"""
Validações de dados fiscais.

Documentos (CNPJ, CPF), chaves de acesso, CFOP, datas e valores no formato
SPED, o gate de identificação da empresa, campos obrigatórios por registro
e a conferência de totais entre registros pai e filho.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd

from exceptions import SpedValidationError
from formatters import somente_digitos

PESOS_CNPJ = [6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2]
PESOS_CPF = [11, 10, 9, 8, 7, 6, 5, 4, 3, 2]

# 1.234,56 / 1234,56 / 0,125 / -10
NUMERO_BR = re.compile(r'^-?(\d{1,3}(\.\d{3})+|\d+)(,\d+)?$')
CFOP = re.compile(r'^[1235-7]\d{3}$')


def _digito_mod11(digitos: str, pesos: List[int]) -> int:
    resto = sum(int(d) * p for d, p in zip(digitos, pesos)) % 11
    return 0 if resto < 2 else 11 - resto


def _confere_digitos(numero: str, tamanho: int, pesos: List[int]) -> bool:
    if len(numero) != tamanho or len(set(numero)) == 1:
        return False
    base = numero[:-2]
    primeiro = _digito_mod11(base, pesos[1:])
    segundo = _digito_mod11(base + str(primeiro), pesos)
    return numero[-2:] == f"{primeiro}{segundo}"


def validate_cnpj(cnpj: str) -> bool:
    """
    Confere os dígitos verificadores de um CNPJ.

    Aceita o número com ou sem máscara. Sequências de um único dígito
    repetido (00.000.000/0000-00) são rejeitadas.

    Example:
        >>> validate_cnpj('11.222.333/0001-81')
        True
        >>> validate_cnpj('11.222.333/0001-82')
        False
    """
    return _confere_digitos(somente_digitos(cnpj), 14, PESOS_CNPJ)


def validate_cpf(cpf: str) -> bool:
    """
    Confere os dígitos verificadores de um CPF.

    Example:
        >>> validate_cpf('529.982.247-25')
        True
        >>> validate_cpf('111.111.111-11')
        False
    """
    return _confere_digitos(somente_digitos(cpf), 11, PESOS_CPF)


def validate_cpf_cnpj(documento: str) -> bool:
    """CPF (11 dígitos) ou CNPJ (14 dígitos) conforme o tamanho."""
    digitos = somente_digitos(documento)
    if len(digitos) == 11:
        return validate_cpf(digitos)
    return validate_cnpj(digitos)


def validate_date_format(date_str: str, format_str: str = '%d%m%Y') -> bool:
    """
    Data no formato SPED (DDMMAAAA por padrão). Campo vazio é aceito.

    Example:
        >>> validate_date_format('29022024')
        True
        >>> validate_date_format('29022025')
        False
    """
    if not date_str or not date_str.strip():
        return True
    try:
        datetime.strptime(date_str, format_str)
    except (ValueError, TypeError):
        return False
    return True


def validate_numeric_field(value: str, allow_empty: bool = True) -> bool:
    """Valor com vírgula decimal e ponto de milhar opcional (``1.234,56``)."""
    if not value or not value.strip():
        return allow_empty
    return bool(NUMERO_BR.match(value.strip()))


def validate_empresa(empresa) -> List[str]:
    """
    Gate de identificação fiscal da empresa antes da geração.

    Args:
        empresa: Instância de Empresa (ou None se não encontrada)

    Returns:
        Rótulos dos campos ausentes, na ordem CNPJ, IE, UF.
        Empresa inexistente resulta em todos os rótulos.
    """
    if empresa is None:
        return ['CNPJ', 'IE', 'UF']

    preenchidos = {
        'CNPJ': somente_digitos(empresa.cnpj),
        'IE': str(empresa.ie or '').strip(),
        'UF': str(empresa.uf or '').strip(),
    }
    return [rotulo for rotulo, valor in preenchidos.items() if not valor]


REQUIRED_FIELDS = {
    '0000': ['COD_VER', 'COD_FIN', 'DT_INI', 'DT_FIN', 'NOME', 'UF', 'IE', 'COD_MUN', 'IND_PERFIL'],
    '0150': ['COD_PART', 'NOME', 'COD_PAIS'],
    '0190': ['UNID', 'DESCR'],
    '0200': ['COD_ITEM', 'DESCR_ITEM', 'TIPO_ITEM'],
    'C100': ['IND_OPER', 'IND_EMIT', 'COD_MOD', 'COD_SIT', 'NUM_DOC', 'DT_DOC'],
    'C170': ['NUM_ITEM', 'COD_ITEM', 'QTD', 'UNID', 'VL_ITEM', 'CST_ICMS', 'CFOP'],
    'C190': ['CST_ICMS', 'CFOP', 'VL_OPR'],
    'D100': ['IND_OPER', 'IND_EMIT', 'COD_MOD', 'COD_SIT', 'NUM_DOC', 'DT_DOC'],
    'D190': ['CST_ICMS', 'CFOP', 'VL_OPR'],
    'H005': ['DT_INV', 'VL_INV', 'MOT_INV'],
    'H010': ['COD_ITEM', 'UNID', 'QTD', 'VL_UNIT', 'VL_ITEM', 'IND_PROP'],
    'H020': ['CST_ICMS', 'BC_ICMS', 'VL_ICMS'],
}


def validate_registro(registro: str, fields: Dict[str, str], strict: bool = False) -> List[str]:
    """
    Campos obrigatórios vazios de um registro.

    Registros sem entrada em ``REQUIRED_FIELDS`` não são conferidos.

    Raises:
        SpedValidationError: Se strict=True e houver campos vazios

    Example:
        >>> validate_registro('C100', {'IND_OPER': '0', 'IND_EMIT': '', 'NUM_DOC': '123'})
        ['IND_EMIT', 'COD_MOD', 'COD_SIT', 'DT_DOC']
    """
    vazios = [
        nome for nome in REQUIRED_FIELDS.get(registro, [])
        if not str(fields.get(nome) or '').strip()
    ]
    if strict and vazios:
        raise SpedValidationError(f"Campos obrigatórios vazios: {', '.join(vazios)}", registro=registro)
    return vazios


def validate_cross_reference_totals(
    parent_df: pd.DataFrame,
    child_df: pd.DataFrame,
    parent_index: str,
    parent_total_col: str,
    child_value_col: str,
    tolerance: float = 0.01
) -> List[Dict[str, Any]]:
    """
    Compara o total de cada registro pai com a soma dos seus filhos.

    As colunas de valor já devem estar numéricas. Pais sem filhos somam zero;
    pais com total vazio são ignorados.

    Args:
        parent_df: Registros pai (ex: C100)
        child_df: Registros filho (ex: C170) com a coluna ``parent_index``
        parent_index: Coluna que liga filho e pai (ex: 'C100_INDEX')
        parent_total_col: Total declarado no pai (ex: 'VL_MERC')
        child_value_col: Valor somado nos filhos (ex: 'VL_ITEM')
        tolerance: Diferença aceita, em reais

    Returns:
        Uma entrada por pai divergente, com totais, diferença e NUM_DOC
    """
    if parent_df.empty or parent_total_col not in parent_df.columns:
        return []
    if not child_df.empty and child_value_col not in child_df.columns:
        return []

    if child_df.empty:
        soma_filhos = pd.Series(dtype=float)
    else:
        soma_filhos = child_df.groupby(parent_index)[child_value_col].sum()

    pais = parent_df.dropna(subset=[parent_total_col])
    somados = pais[parent_index].map(soma_filhos).fillna(0)
    diferencas = (pais[parent_total_col] - somados).abs()

    return [
        {
            'index': row[parent_index],
            'parent_total': row[parent_total_col],
            'child_total': somados.loc[i],
            'difference': diferencas.loc[i],
            'registro_pai': row.get('REG', ''),
            'num_doc': row.get('NUM_DOC', ''),
        }
        for i, row in pais[diferencas > tolerance].iterrows()
    ]


def validate_chave_nfe(chave: Optional[str]) -> bool:
    """Chave de acesso de NF-e/CT-e com 44 dígitos. Campo vazio é aceito."""
    if not chave or not chave.strip():
        return True
    return len(somente_digitos(chave)) == 44


def validate_cfop(cfop: Optional[str]) -> bool:
    """
    CFOP de 4 dígitos: 1-3 para entradas, 5-7 para saídas.

    Example:
        >>> validate_cfop('5102')
        True
        >>> validate_cfop('4102')
        False
    """
    if not cfop or not cfop.strip():
        return True
    return bool(CFOP.match(cfop.strip()))
