from dataclasses import replace
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from exceptions import SpedDataError, SpedError, SpedValidationError
from helpers import codigos, documento, item, registros
from sped_models import (
    IndicadorPropriedade, ItemInventario, Participante, SpedParams, SpedResult, TipoOperacao
)
from sped_service import (
    FonteDadosMemoria, gerar_arquivo_sped, listar_periodos_disponiveis, main,
    nome_arquivo_sped, salvar_arquivo
)

DADOS_EXEMPLO = Path(__file__).parent.parent / "dados_exemplo.yaml"


class FonteComFalha(FonteDadosMemoria):
    def buscar_documentos(self, empresa_id, tipo, inicio, fim):
        raise SpedDataError("Banco indisponível")


def _params(**kwargs):
    return SpedParams.do_mes("EMP1", 3, 2026, **kwargs)


def test_geracao_com_sucesso(fonte):
    resultado = gerar_arquivo_sped(_params(), fonte)

    assert resultado.sucesso, resultado.erro
    assert resultado.nome_arquivo == "SPED_11222333000181_202603.txt"
    assert resultado.validacao.valido, resultado.validacao.erros
    assert resultado.conteudo.startswith("|0000|")
    assert resultado.metricas["registros_por_tipo"]["C100"] == 2


def test_empresa_sem_ie_nao_gera_arquivo(fonte, empresa):
    fonte.empresa = replace(empresa, ie="")

    resultado = gerar_arquivo_sped(_params(), fonte)

    assert not resultado.sucesso
    assert resultado.conteudo is None
    assert "dados fiscais incompletos" in resultado.erro
    assert "IE" in resultado.erro


def test_empresa_inexistente(fonte):
    resultado = gerar_arquivo_sped(SpedParams.do_mes("OUTRA", 3, 2026), fonte)

    assert not resultado.sucesso
    assert "CNPJ" in resultado.erro


def test_falha_na_fonte_vira_resultado_sem_sucesso(empresa, participantes, produtos, documentos):
    fonte = FonteComFalha(empresa, participantes=participantes, produtos=produtos, documentos=documentos)

    resultado = gerar_arquivo_sped(_params(), fonte)

    assert not resultado.sucesso
    assert "Banco indisponível" in resultado.erro


def test_documentos_fora_do_periodo_sao_ignorados(fonte):
    fonte.documentos.append(
        documento(TipoOperacao.SAIDA, 900, [item("P2")], "C1", emissao=date(2026, 4, 1))
    )

    resultado = gerar_arquivo_sped(_params(), fonte)

    numeros = [c[7] for c in registros(resultado.conteudo, "C100")]
    assert numeros == ["100", "200"]


def test_participantes_sem_documento_no_periodo_nao_entram(fonte, participantes):
    fonte.documentos = [d for d in fonte.documentos if d.tipo is TipoOperacao.SAIDA]

    resultado = gerar_arquivo_sped(_params(), fonte)

    assert [c[1] for c in registros(resultado.conteudo, "0150")] == ["C1"]


def test_inventario_incluido_quando_solicitado(fonte):
    fonte.inventario = [
        ItemInventario("P1", "UN", 3, Decimal("10"), Decimal("30.00")),
        ItemInventario("P2", "UN", 0, Decimal("1"), Decimal("0")),
    ]

    resultado = gerar_arquivo_sped(_params(incluir_inventario=True), fonte)

    assert resultado.sucesso, resultado.erro
    assert [c for c in codigos(resultado.conteudo) if c.startswith("H")] == [
        "H001", "H005", "H010", "H990"
    ]
    assert registros(resultado.conteudo, "H005")[0][1] == "31032026"


def test_inventario_ignorado_sem_a_opcao(fonte):
    fonte.inventario = [ItemInventario("P1", "UN", 3, Decimal("10"), Decimal("30.00"))]

    resultado = gerar_arquivo_sped(_params(), fonte)

    assert "H010" not in codigos(resultado.conteudo)


def test_listar_periodos_do_mais_recente_ao_mais_antigo(fonte):
    fonte.documentos = [
        documento(TipoOperacao.SAIDA, 1, [item()], "C1", emissao=date(2025, 12, 5)),
        documento(TipoOperacao.SAIDA, 2, [item(valor=Decimal("10.10"))], "C1", emissao=date(2026, 1, 5)),
        documento(TipoOperacao.ENTRADA, 3, [item(valor=Decimal("20.20"))], "F1", emissao=date(2026, 1, 9)),
        documento(TipoOperacao.SAIDA, 4, [item()], "C1", emissao=date(2026, 3, 1)),
    ]

    periodos = listar_periodos_disponiveis("EMP1", fonte)

    assert [(p.mes, p.ano) for p in periodos] == [(3, 2026), (1, 2026), (12, 2025)]
    assert periodos[1].total_notas == 2
    assert periodos[1].valor_total == pytest.approx(30.30)
    assert all(p.tem_dados for p in periodos)


def test_listar_periodos_sem_documentos(fonte):
    fonte.documentos = []

    assert listar_periodos_disponiveis("EMP1", fonte) == []
    assert listar_periodos_disponiveis("OUTRA", fonte) == []


def test_nome_arquivo_sped():
    assert nome_arquivo_sped("11222333000181", date(2026, 1, 1)) == "SPED_11222333000181_202601.txt"


@pytest.mark.parametrize("mes, ano", [(0, 2026), (13, 2026), (3, 1999)])
def test_params_do_mes_invalido(mes, ano):
    with pytest.raises(SpedValidationError):
        SpedParams.do_mes("EMP1", mes, ano)


def test_params_do_mes_cobre_o_mes_inteiro():
    params = SpedParams.do_mes("EMP1", 2, 2028)

    assert params.data_inicial == date(2028, 2, 1)
    assert params.data_final == date(2028, 2, 29)


def test_fonte_yaml_de_exemplo():
    fonte = FonteDadosMemoria.from_yaml(DADOS_EXEMPLO)

    resultado = gerar_arquivo_sped(_params(incluir_inventario=True), fonte)

    assert resultado.sucesso, resultado.erro
    assert resultado.validacao.valido, resultado.validacao.erros
    cods = codigos(resultado.conteudo)
    assert cods[2:4] == ["0005", "0100"]
    assert cods.count("C100") == 2
    assert cods.count("D100") == 1
    assert cods.count("H010") == 1


def test_fonte_yaml_inexistente(tmp_path):
    with pytest.raises(SpedDataError):
        FonteDadosMemoria.from_yaml(tmp_path / "nao_existe.yaml")


def test_fonte_sem_empresa():
    with pytest.raises(SpedDataError):
        FonteDadosMemoria.from_dict({"documentos": []})


def test_salvar_arquivo_preserva_crlf(fonte, tmp_path):
    resultado = gerar_arquivo_sped(_params(), fonte)

    destino = salvar_arquivo(resultado, tmp_path)

    assert destino.name == resultado.nome_arquivo
    assert destino.read_bytes() == resultado.conteudo.encode("latin-1")


def test_salvar_resultado_sem_sucesso():
    with pytest.raises(SpedError):
        salvar_arquivo(SpedResult(sucesso=False, erro="falhou"), "qualquer.txt")


def test_cli_gerar_e_validar(tmp_path, capsys):
    codigo = main([
        "gerar", str(DADOS_EXEMPLO), "--empresa", "EMP1", "--mes", "3", "--ano", "2026",
        "--inventario", "--out", str(tmp_path),
    ])

    arquivo = tmp_path / "SPED_11222333000181_202603.txt"
    assert codigo == 0
    assert arquivo.exists()

    assert main(["validar", str(arquivo)]) == 0
    assert "Válido: sim" in capsys.readouterr().out


def test_cli_periodos(capsys):
    assert main(["periodos", str(DADOS_EXEMPLO), "--empresa", "EMP1"]) == 0

    saida = capsys.readouterr().out.splitlines()
    assert saida[0].startswith("03/2026: 3 nota(s)")
    assert saida[1].startswith("01/2026: 1 nota(s)")


def test_cli_empresa_desconhecida_retorna_1(tmp_path):
    codigo = main([
        "gerar", str(DADOS_EXEMPLO), "--empresa", "XPTO", "--mes", "3", "--ano", "2026",
        "--out", str(tmp_path),
    ])

    assert codigo == 1


def test_cli_motivo_de_inventario_gera_h020(tmp_path):
    codigo = main([
        "gerar", str(DADOS_EXEMPLO), "--empresa", "EMP1", "--mes", "3", "--ano", "2026",
        "--inventario", "--motivo", "02", "--out", str(tmp_path),
    ])

    conteudo = (tmp_path / "SPED_11222333000181_202603.txt").read_bytes().decode("latin-1")
    assert codigo == 0
    assert codigos(conteudo).count("H020") == 1


def test_fonte_yaml_preserva_codigos_com_zero_a_esquerda(tmp_path):
    arquivo = tmp_path / "dados.yaml"
    arquivo.write_text(
        "empresa:\n"
        "  id: 1\n"
        "  razao_social: EMPRESA TESTE LTDA\n"
        "  cnpj: 11222333000181\n"
        "participantes:\n"
        "  - codigo: 0150\n"
        "    nome: FORNECEDOR\n"
        "produtos:\n"
        "  - codigo: 0150\n"
        "    descricao: BOVINO VIVO\n"
        "    unidade: UN\n"
        "    ncm: 01012100\n",
        encoding="utf-8",
    )

    fonte = FonteDadosMemoria.from_yaml(arquivo)

    assert fonte.produtos[0].codigo == "0150"
    assert fonte.produtos[0].ncm == "01012100"
    assert fonte.participantes[0].codigo == "0150"
    assert fonte.empresa.cnpj == "11222333000181"
    assert fonte.empresa.id == "1"


def test_parametros_invalidos_viram_resultado_sem_sucesso(fonte):
    params = replace(_params(), data_inicial="2026-03-01")

    resultado = gerar_arquivo_sped(params, fonte)

    assert not resultado.sucesso
    assert resultado.erro


def test_participante_do_inventario_gera_0150(fonte, participantes):
    fonte.participantes = participantes + [Participante(codigo="F9", nome="DEPOSITARIO")]
    fonte.inventario = [
        ItemInventario(
            "P1", "UN", 3, Decimal("10"), Decimal("30.00"),
            IndicadorPropriedade.PROPRIO_COM_TERCEIROS, "F9",
        ),
    ]

    resultado = gerar_arquivo_sped(_params(incluir_inventario=True), fonte)

    assert resultado.sucesso, resultado.erro
    assert resultado.validacao.valido, resultado.validacao.erros
    assert "F9" in [c[1] for c in registros(resultado.conteudo, "0150")]
    assert registros(resultado.conteudo, "H010")[0][7] == "F9"
