from datetime import date
from decimal import Decimal

import pytest

from helpers import documento, item
from sped_models import DadosSped, Empresa, Participante, Produto, SpedConfig, TipoOperacao
from sped_service import FonteDadosMemoria

CNPJ_EMPRESA = "11222333000181"


@pytest.fixture
def empresa():
    return Empresa(
        id="EMP1",
        razao_social="EMPRESA TESTE LTDA",
        cnpj=CNPJ_EMPRESA,
        ie="123456789",
        uf="SP",
        codigo_municipio="3550308",
    )


@pytest.fixture
def participantes():
    return [
        Participante(codigo="F1", nome="FORNECEDOR UM", cnpj_cpf="11444777000161"),
        Participante(codigo="C1", nome="CLIENTE UM", cnpj_cpf="52998224725"),
    ]


@pytest.fixture
def produtos():
    return [
        Produto(codigo="P1", descricao="PRODUTO UM", unidade="UN", ncm="73181500"),
        Produto(codigo="P2", descricao="PRODUTO DOIS", unidade="UN", ncm="73182200"),
    ]


@pytest.fixture
def documentos():
    """Uma entrada com 1 item e uma saída com 2 itens, ambas modelo 55."""
    entrada = documento(TipoOperacao.ENTRADA, 100, [item("P1", cfop="1102")], "F1")
    saida = documento(
        TipoOperacao.SAIDA, 200,
        [item("P1", valor=Decimal("50.00")), item("P2", valor=Decimal("30.00"))],
        "C1",
    )
    return [entrada, saida]


@pytest.fixture
def dados(empresa, participantes, produtos, documentos):
    return DadosSped(
        config=SpedConfig(date(2026, 3, 1), date(2026, 3, 31), empresa),
        participantes=participantes,
        produtos=produtos,
        documentos=documentos,
    )


@pytest.fixture
def fonte(empresa, participantes, produtos, documentos):
    return FonteDadosMemoria(
        empresa=empresa,
        participantes=participantes,
        produtos=produtos,
        documentos=documentos,
    )
