"""
Formatadores de campos SPED.

Convertem valores numéricos, datas e textos para as convenções do leiaute
EFD ICMS/IPI: vírgula como separador decimal, sem separador de milhar,
datas no formato ddmmaaaa e campos sem o caractere delimitador.
"""

import re
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

Numero = Union[int, float, Decimal]

DELIMITADOR = '|'

# Delimitador e tudo o que str.splitlines() trata como fim de linha
QUEBRAS_E_DELIMITADOR = re.compile('[|\r\n\x0b\x0c\x1c\x1d\x1e\x85\u2028\u2029]+')


def para_decimal(valor: Numero) -> Decimal:
    if isinstance(valor, Decimal):
        return valor
    # str() evita carregar o erro de representação binária do float
    return Decimal(str(valor))


def formatar_valor(valor: Optional[Numero], casas: int = 2) -> str:
    """
    Formata valor numérico no padrão SPED.

    Args:
        valor: Valor a formatar (None resulta em campo vazio)
        casas: Número de casas decimais

    Returns:
        String com vírgula decimal e exatamente ``casas`` dígitos fracionários

    Example:
        >>> formatar_valor(1000)
        '1000,00'
        >>> formatar_valor(-50.5)
        '-50,50'
    """
    if valor is None:
        return ''

    quantum = Decimal(1).scaleb(-casas)
    arredondado = para_decimal(valor).quantize(quantum, rounding=ROUND_HALF_UP)
    if arredondado == 0:
        arredondado = abs(arredondado)

    return f"{arredondado:f}".replace('.', ',')


def formatar_quantidade(quantidade: Optional[Numero]) -> str:
    """Formata quantidade com 3 casas decimais."""
    return formatar_valor(quantidade, casas=3)


def formatar_data(data: Optional[Union[date, datetime]]) -> str:
    """
    Formata data no padrão SPED (ddmmaaaa).

    Example:
        >>> formatar_data(date(2026, 1, 5))
        '05012026'
    """
    if data is None:
        return ''
    return f"{data.day:02d}{data.month:02d}{data.year:04d}"


def formatar_texto(valor) -> str:
    """Converte para texto removendo delimitadores e quebras de linha."""
    if valor is None:
        return ''
    texto = str(valor).strip()
    return QUEBRAS_E_DELIMITADOR.sub(' ', texto)


def somente_digitos(valor) -> str:
    """Mantém apenas os dígitos de um documento (CNPJ, CPF, IE, CEP)."""
    if not valor:
        return ''
    return re.sub(r'\D', '', str(valor))
