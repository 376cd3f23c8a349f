from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from exceptions import SpedValidationError
from helpers import codigos, documento, item, linhas, registros
from metrics import GenerationMetrics
from sped_generator import (
    LAYOUTS, SpedAssembler, agrupar_analitico, gerar_sped_fiscal, montar_registro,
    registro_0000, serializar_registros
)
from sped_models import (
    Contabilista, Inventario, ItemInventario, MotivoInventario, Participante, Produto, SpedConfig,
    TipoOperacao, TipoRegistro, Unidade
)


def test_arquivo_comeca_em_0000_e_termina_em_9999(dados):
    conteudo = gerar_sped_fiscal(dados)

    cods = codigos(conteudo)
    assert cods[0] == "0000"
    assert cods[-1] == "9999"


def test_toda_linha_termina_com_crlf(dados):
    conteudo = gerar_sped_fiscal(dados)

    assert conteudo.endswith("\r\n")
    assert conteudo.count("\r\n") == conteudo.count("\n")
    for linha in linhas(conteudo):
        assert linha.startswith("|") and linha.endswith("|")


def test_ordem_dos_blocos(dados):
    cods = codigos(gerar_sped_fiscal(dados))

    blocos = []
    for codigo in cods:
        if not blocos or blocos[-1] != codigo[0]:
            blocos.append(codigo[0])
    assert blocos == ["0", "C", "D", "H", "9"]


def test_ordem_do_bloco_0_unidades_antes_dos_produtos(dados):
    cods = [c for c in codigos(gerar_sped_fiscal(dados)) if c.startswith("0")]

    assert cods == ["0000", "0001", "0150", "0150", "0190", "0200", "0200", "0990"]


def test_registro_0000_campos(dados):
    campos = registros(gerar_sped_fiscal(dados), "0000")[0]

    assert campos == [
        "0000", "017", "0", "01032026", "31032026", "EMPRESA TESTE LTDA",
        "11222333000181", "", "SP", "123456789", "3550308", "", "", "A", "0",
    ]


def test_entrada_e_saida_contagens_no_9900(dados):
    conteudo = gerar_sped_fiscal(dados)

    declarados = {c[1]: int(c[2]) for c in registros(conteudo, "9900")}
    assert declarados["C100"] == 2
    assert declarados["C170"] == 3
    assert declarados["C190"] == 2


def test_entradas_antes_das_saidas(dados):
    c100 = registros(gerar_sped_fiscal(dados), "C100")

    assert [c[1] for c in c100] == ["0", "1"]
    # IND_EMIT: entrada de terceiros, saída de emissão própria
    assert [c[2] for c in c100] == ["1", "0"]


def test_documento_seguido_dos_seus_itens(dados):
    cods = [c for c in codigos(gerar_sped_fiscal(dados)) if c.startswith("C")]

    assert cods == ["C001", "C100", "C170", "C190", "C100", "C170", "C170", "C190", "C990"]


def test_numeracao_dos_itens_e_posicional(dados):
    c170 = registros(gerar_sped_fiscal(dados), "C170")

    assert [c[1] for c in c170] == ["1", "1", "2"]
    assert [c[2] for c in c170] == ["P1", "P1", "P2"]


def test_totalizadores_de_encerramento(dados):
    conteudo = gerar_sped_fiscal(dados)

    assert registros(conteudo, "0990")[0][1] == "8"
    assert registros(conteudo, "C990")[0][1] == "9"
    assert registros(conteudo, "D990")[0][1] == "2"
    assert registros(conteudo, "H990")[0][1] == "2"
    assert registros(conteudo, "9990")[0][1] == str(sum(1 for c in codigos(conteudo) if c[0] == "9"))
    assert registros(conteudo, "9999")[0][1] == str(len(linhas(conteudo))) == "43"


def test_9900_inclui_os_proprios_registros_do_bloco_9(dados):
    conteudo = gerar_sped_fiscal(dados)

    declarados = {c[1]: int(c[2]) for c in registros(conteudo, "9900")}
    assert declarados["9900"] == len(registros(conteudo, "9900")) == 19
    assert declarados["9990"] == 1
    assert declarados["9999"] == 1
    assert list(declarados)[:3] == ["0000", "0001", "0150"]


def test_bloco_sem_movimento_tem_ind_mov_1(dados):
    conteudo = gerar_sped_fiscal(dados)

    assert registros(conteudo, "C001")[0][1] == "0"
    assert registros(conteudo, "D001")[0][1] == "1"
    assert registros(conteudo, "H001")[0][1] == "1"


def test_documento_modelo_57_vai_para_o_bloco_d(dados):
    cte = documento(TipoOperacao.ENTRADA, 77, [item("P1", cfop="1353", aliquota=12)], "F1", modelo="57")
    dados.documentos.append(cte)

    conteudo = gerar_sped_fiscal(dados)

    d100 = registros(conteudo, "D100")
    assert len(d100) == 1
    assert d100[0][8] == "77"
    assert len(registros(conteudo, "D190")) == 1
    assert len(registros(conteudo, "C100")) == 2
    assert registros(conteudo, "D001")[0][1] == "0"


def test_c190_agrupa_por_cst_cfop_e_aliquota(dados):
    doc = documento(TipoOperacao.SAIDA, 300, [
        item("P1", valor=Decimal("10.00")),
        item("P2", valor=Decimal("20.00"), aliquota=12),
        item("P1", valor=Decimal("5.00")),
    ], "C1")
    dados.documentos = [doc]

    c190 = registros(gerar_sped_fiscal(dados), "C190")

    assert [(c[1], c[2], c[3], c[4]) for c in c190] == [
        ("000", "5102", "18,00", "15,00"),
        ("000", "5102", "12,00", "20,00"),
    ]


def test_agrupar_analitico_soma_ipi_e_desconta_desconto():
    itens = [replace(item("P1", valor=Decimal("100.00")), valor_desconto=10, valor_ipi=5)]

    grupos = agrupar_analitico(itens)

    assert grupos[0]["valor_operacao"] == Decimal("95.00")
    assert grupos[0]["valor_ipi"] == Decimal("5")


def test_participantes_e_produtos_duplicados_mantem_o_primeiro(dados):
    dados.participantes.append(Participante(codigo="F1", nome="DUPLICADO"))
    dados.produtos.append(Produto(codigo="P1", descricao="DUPLICADO", unidade="UN"))
    metrics = GenerationMetrics()

    conteudo = gerar_sped_fiscal(dados, metrics)

    r0150 = registros(conteudo, "0150")
    assert [c[1] for c in r0150] == ["F1", "C1"]
    assert r0150[0][2] == "FORNECEDOR UM"
    assert [c[1] for c in registros(conteudo, "0200")] == ["P1", "P2"]
    assert metrics.warnings


def test_participante_com_cpf_preenche_campo_cpf(dados):
    r0150 = registros(gerar_sped_fiscal(dados), "0150")

    assert r0150[0][4] == "11444777000161" and r0150[0][5] == ""
    assert r0150[1][4] == "" and r0150[1][5] == "52998224725"


def test_unidades_derivadas_usam_descricao_configurada(dados):
    r0190 = registros(gerar_sped_fiscal(dados), "0190")

    assert r0190 == [["0190", "UN", "UNIDADE"]]


def test_unidades_explicitas_sao_respeitadas(dados):
    dados.unidades = [Unidade("UN", "UNIDADE"), Unidade("XYZ", "OUTRA")]

    r0190 = registros(gerar_sped_fiscal(dados), "0190")

    assert [c[1] for c in r0190] == ["UN", "XYZ"]


def test_0005_e_0100_quando_ha_dados(dados, empresa):
    empresa_completa = replace(empresa, nome_fantasia="FANTASIA", cep="01001-000")
    contador = Contabilista(nome="CONTADOR", cpf="529.982.247-25", crc="SP1")
    dados.config = SpedConfig(dados.config.data_inicial, dados.config.data_final, empresa_completa, contador)

    conteudo = gerar_sped_fiscal(dados)

    assert codigos(conteudo)[:4] == ["0000", "0001", "0005", "0100"]
    assert registros(conteudo, "0005")[0][1:3] == ["FANTASIA", "01001000"]
    assert registros(conteudo, "0100")[0][2] == "52998224725"


def test_inventario_gera_h005_e_h010_sem_itens_zerados(dados):
    dados.inventario = Inventario(
        data=date(2026, 3, 31),
        itens=[
            ItemInventario("P1", "UN", 10, Decimal("2.5"), Decimal("25.00")),
            ItemInventario("P2", "UN", 0, Decimal("1"), Decimal("0")),
            ItemInventario("P2", "UN", 4, Decimal("1.25"), Decimal("5.00")),
        ],
    )
    metrics = GenerationMetrics()

    conteudo = gerar_sped_fiscal(dados, metrics)

    cods = [c for c in codigos(conteudo) if c.startswith("H")]
    assert cods == ["H001", "H005", "H010", "H010", "H990"]
    assert registros(conteudo, "H001")[0][1] == "0"
    assert registros(conteudo, "H005")[0][1:] == ["31032026", "30,00", "01"]
    h010 = registros(conteudo, "H010")
    assert h010[0][1:6] == ["P1", "UN", "10,000", "2,500000", "25,00"]
    assert registros(conteudo, "H990")[0][1] == "5"
    assert metrics.itens_inventario_descartados == 1


def test_inventario_sem_itens_positivos_mantem_apenas_abertura_e_encerramento(dados):
    dados.inventario = Inventario(date(2026, 3, 31), [ItemInventario("P1", "UN", 0, 1, 0)])

    cods = [c for c in codigos(gerar_sped_fiscal(dados)) if c.startswith("H")]

    assert cods == ["H001", "H990"]


def test_texto_com_delimitador_nao_quebra_o_registro(dados):
    dados.participantes[0] = Participante(codigo="F1", nome="ALFA | BETA", cnpj_cpf="11444777000161")

    conteudo = gerar_sped_fiscal(dados)

    r0150 = registros(conteudo, "0150")[0]
    assert len(r0150) == len(LAYOUTS["0150"])
    assert r0150[2] == "ALFA   BETA"


def test_metricas_acompanham_registros_emitidos(dados):
    metrics = GenerationMetrics()

    conteudo = gerar_sped_fiscal(dados, metrics)

    assert metrics.total_linhas == len(linhas(conteudo))
    assert metrics.registros_por_tipo["C170"] == 3
    assert metrics.documentos_por_bloco["C"] == 2
    assert metrics.linhas_por_bloco["0"] == 8


def test_montar_registro_preenche_campos_ausentes_com_vazio():
    registro = montar_registro(TipoRegistro.R0190, {"UNID": "UN"})

    assert registro.to_line() == "|0190|UN||"


def test_montar_registro_rejeita_campo_fora_do_leiaute():
    with pytest.raises(SpedValidationError):
        montar_registro(TipoRegistro.R0190, {"XPTO": "1"})


def test_registro_0000_usa_versao_configurada(dados):
    registro = registro_0000(dados.config)

    assert registro.campos[0] == "017"
    assert len(registro.campos) == len(LAYOUTS["0000"]) - 1


def test_serializar_registros_com_terminador_customizado():
    registros_ = [montar_registro(TipoRegistro.R0001, {"IND_MOV": "0"})]

    assert serializar_registros(registros_, "\n") == "|0001|0|\n"


def test_montar_e_idempotente(dados):
    assembler = SpedAssembler(dados)

    primeira = assembler.montar()
    segunda = assembler.montar()

    assert primeira is segunda
    assert assembler.metrics.total_linhas == len(primeira)


def test_inventario_por_mudanca_de_tributacao_gera_h020(dados):
    dados.inventario = Inventario(
        data=date(2026, 3, 31),
        itens=[ItemInventario("P1", "UN", 10, Decimal("2.5"), Decimal("25.00"),
                              cst_icms="000", base_calculo_icms=Decimal("25.00"),
                              valor_icms=Decimal("4.50"))],
        motivo=MotivoInventario.MUDANCA_TRIBUTACAO,
    )

    conteudo = gerar_sped_fiscal(dados)

    cods = [c for c in codigos(conteudo) if c.startswith("H")]
    assert cods == ["H001", "H005", "H010", "H020", "H990"]
    assert registros(conteudo, "H005")[0][3] == "02"
    assert registros(conteudo, "H020")[0][1:] == ["000", "25,00", "4,50"]
    assert registros(conteudo, "H990")[0][1] == "5"
